"""
Event Bus - pub/sub for pipeline lifecycle events.

The executor and handlers publish events as a run progresses; UIs, log
shippers and tests subscribe. A listener that raises is logged and skipped:
it never stops other listeners or the run.

Events are published in execution order. ``publish`` awaits every matching
listener before returning, so a listener sees stage N's events before
stage N+1 starts.
"""

import asyncio
import inspect
import logging
from collections import Counter, deque
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any

logger = logging.getLogger(__name__)


class EventType(StrEnum):
    """Lifecycle events of a pipeline run."""

    # Pipeline lifecycle
    PIPELINE_STARTED = "pipeline_started"
    PIPELINE_COMPLETED = "pipeline_completed"
    PIPELINE_FAILED = "pipeline_failed"

    # Stage lifecycle
    STAGE_STARTED = "stage_started"
    STAGE_COMPLETED = "stage_completed"
    STAGE_FAILED = "stage_failed"
    STAGE_RETRYING = "stage_retrying"

    # Parallel fan-out
    PARALLEL_STARTED = "parallel_started"
    PARALLEL_BRANCH_STARTED = "parallel_branch_started"
    PARALLEL_BRANCH_COMPLETED = "parallel_branch_completed"
    PARALLEL_COMPLETED = "parallel_completed"

    # Human gates
    INTERVIEW_STARTED = "interview_started"
    INTERVIEW_COMPLETED = "interview_completed"
    INTERVIEW_TIMEOUT = "interview_timeout"

    # Persistence
    CHECKPOINT_SAVED = "checkpoint_saved"


@dataclass
class PipelineEvent:
    """One lifecycle event of a run. ``data`` depends on the event type."""

    type: EventType
    run_id: str = ""
    node_id: str | None = None
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "run_id": self.run_id,
            "node_id": self.node_id,
            "timestamp": self.timestamp.isoformat(),
            "data": dict(self.data),
        }


# Listeners may be coroutines or plain callables.
EventListener = Callable[[PipelineEvent], Awaitable[None] | None]


@dataclass
class Subscription:
    """A registered listener and the events it wants."""

    id: str
    listener: EventListener
    event_types: frozenset[EventType] | None = None
    node_id: str | None = None

    def wants(self, event: PipelineEvent) -> bool:
        if self.event_types is not None and event.type not in self.event_types:
            return False
        return self.node_id is None or self.node_id == event.node_id


class EventBus:
    """
    Pub/sub event bus for pipeline runs.

    Example:
        bus = EventBus()

        async def on_stage_failed(event: PipelineEvent):
            print(f"{event.node_id} failed: {event.data['error']}")

        bus.subscribe(on_stage_failed, event_types=[EventType.STAGE_FAILED])
        executor = GraphExecutor(event_bus=bus)
    """

    def __init__(self, run_id: str = "", max_history: int = 1000, max_concurrent_handlers: int = 10):
        """
        Args:
            run_id: Stamped onto every event emitted through the emit_* helpers
            max_history: Number of most recent events kept for get_history()
            max_concurrent_handlers: Cap on listeners running at once
        """
        self.run_id = run_id
        self._listeners: dict[str, Subscription] = {}
        self._history: deque[PipelineEvent] = deque(maxlen=max_history)
        self._listener_slots = asyncio.Semaphore(max_concurrent_handlers)
        self._next_id = 0

    def subscribe(
        self,
        handler: EventListener,
        event_types: Iterable[EventType] | None = None,
        filter_node: str | None = None,
    ) -> str:
        """
        Register a listener.

        Args:
            handler: Sync or async callable receiving each matching event
            event_types: Types to receive; None receives every type
            filter_node: Only receive events about this node

        Returns:
            Subscription id, "sub_<n>", for unsubscribe()
        """
        self._next_id += 1
        sub_id = f"sub_{self._next_id}"
        self._listeners[sub_id] = Subscription(
            id=sub_id,
            listener=handler,
            event_types=frozenset(event_types) if event_types is not None else None,
            node_id=filter_node,
        )
        logger.debug(f"Subscription {sub_id} registered for {event_types or 'all events'}")
        return sub_id

    def unsubscribe(self, subscription_id: str) -> bool:
        """Remove a subscription. Returns True if it existed."""
        removed = self._listeners.pop(subscription_id, None)
        if removed is not None:
            logger.debug(f"Subscription {subscription_id} removed")
        return removed is not None

    async def publish(self, event: PipelineEvent) -> None:
        """Record ``event`` and await every listener that wants it."""
        self._history.append(event)
        targets = [s for s in list(self._listeners.values()) if s.wants(event)]
        if targets:
            await asyncio.gather(*(self._deliver(s, event) for s in targets))

    async def _deliver(self, subscription: Subscription, event: PipelineEvent) -> None:
        async with self._listener_slots:
            try:
                result = subscription.listener(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Handler error for {event.type}: {e}")

    async def _emit(self, event_type: EventType, node_id: str | None = None, **data: Any) -> None:
        await self.publish(PipelineEvent(type=event_type, run_id=self.run_id, node_id=node_id, data=data))

    # === CONVENIENCE PUBLISHERS ===

    async def emit_pipeline_started(self, name: str, run_id: str) -> None:
        await self._emit(EventType.PIPELINE_STARTED, name=name, id=run_id)

    async def emit_pipeline_completed(self, duration_ms: int, artifact_count: int = 0) -> None:
        await self._emit(
            EventType.PIPELINE_COMPLETED, duration_ms=duration_ms, artifact_count=artifact_count
        )

    async def emit_pipeline_failed(self, error: str, duration_ms: int, node_id: str | None = None) -> None:
        await self._emit(EventType.PIPELINE_FAILED, node_id=node_id, error=error, duration_ms=duration_ms)

    async def emit_stage_started(self, node_id: str, index: int) -> None:
        await self._emit(EventType.STAGE_STARTED, node_id=node_id, name=node_id, index=index)

    async def emit_stage_completed(self, node_id: str, index: int, duration_ms: int) -> None:
        await self._emit(
            EventType.STAGE_COMPLETED, node_id=node_id, name=node_id, index=index, duration_ms=duration_ms
        )

    async def emit_stage_failed(self, node_id: str, index: int, error: str, will_retry: bool = False) -> None:
        await self._emit(
            EventType.STAGE_FAILED,
            node_id=node_id,
            name=node_id,
            index=index,
            error=error,
            will_retry=will_retry,
        )

    async def emit_stage_retrying(self, node_id: str, index: int, attempt: int, delay_ms: int) -> None:
        await self._emit(
            EventType.STAGE_RETRYING,
            node_id=node_id,
            name=node_id,
            index=index,
            attempt=attempt,
            delay_ms=delay_ms,
        )

    async def emit_parallel_started(self, node_id: str, branch_count: int) -> None:
        await self._emit(EventType.PARALLEL_STARTED, node_id=node_id, branch_count=branch_count)

    async def emit_parallel_branch_started(self, node_id: str, branch: str, index: int) -> None:
        await self._emit(EventType.PARALLEL_BRANCH_STARTED, node_id=node_id, branch=branch, index=index)

    async def emit_parallel_branch_completed(
        self, node_id: str, branch: str, index: int, duration_ms: int, success: bool
    ) -> None:
        await self._emit(
            EventType.PARALLEL_BRANCH_COMPLETED,
            node_id=node_id,
            branch=branch,
            index=index,
            duration_ms=duration_ms,
            success=success,
        )

    async def emit_parallel_completed(
        self, node_id: str, duration_ms: int, success_count: int, failure_count: int
    ) -> None:
        await self._emit(
            EventType.PARALLEL_COMPLETED,
            node_id=node_id,
            duration_ms=duration_ms,
            success_count=success_count,
            failure_count=failure_count,
        )

    async def emit_interview_started(self, node_id: str, question: str) -> None:
        await self._emit(EventType.INTERVIEW_STARTED, node_id=node_id, question=question, stage=node_id)

    async def emit_interview_completed(
        self, node_id: str, question: str, answer: str, duration_ms: int
    ) -> None:
        await self._emit(
            EventType.INTERVIEW_COMPLETED,
            node_id=node_id,
            question=question,
            answer=answer,
            duration_ms=duration_ms,
        )

    async def emit_interview_timeout(self, node_id: str, question: str, duration_ms: int) -> None:
        await self._emit(
            EventType.INTERVIEW_TIMEOUT,
            node_id=node_id,
            question=question,
            stage=node_id,
            duration_ms=duration_ms,
        )

    async def emit_checkpoint_saved(self, node_id: str | None) -> None:
        await self._emit(EventType.CHECKPOINT_SAVED, node_id=node_id)

    # === QUERY OPERATIONS ===

    def get_history(
        self,
        event_type: EventType | None = None,
        node_id: str | None = None,
        limit: int | None = None,
    ) -> list[PipelineEvent]:
        """
        Recorded events in emission order.

        Args:
            event_type: Only events of this type
            node_id: Only events about this node
            limit: Keep only the most recent N matches
        """
        events = [
            e
            for e in self._history
            if (event_type is None or e.type == event_type)
            and (node_id is None or e.node_id == node_id)
        ]
        return events[-limit:] if limit is not None else events

    def get_stats(self) -> dict[str, Any]:
        counts = Counter(e.type.value for e in self._history)
        return {
            "total_events": len(self._history),
            "subscriptions": len(self._listeners),
            "events_by_type": dict(counts),
        }
