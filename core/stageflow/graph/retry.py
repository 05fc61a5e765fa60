"""
Retry - bounded re-execution of a stage with exponential backoff.

A RetryPolicy decides how many attempts a node gets; a Backoff decides how
long to wait between them. RetryExecutor ties both to a handler call and is
the only place handler exceptions are caught: they become ``fail`` outcomes
and are retried like any other failure.
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, ClassVar

from stageflow.errors import HandlerNotFoundError
from stageflow.graph.context import Context
from stageflow.graph.edge import Graph
from stageflow.graph.node import Node
from stageflow.graph.outcome import Outcome, StageStatus

if TYPE_CHECKING:
    from stageflow.handlers.registry import HandlerRegistry
    from stageflow.runtime.event_bus import EventBus

logger = logging.getLogger(__name__)

PARTIAL_ACCEPTED_NOTE = "retries exhausted, partial accepted"


@dataclass(frozen=True)
class Backoff:
    """Exponential backoff with optional jitter, in milliseconds."""

    initial_delay_ms: int = 200
    factor: float = 2.0
    max_delay_ms: int = 60_000
    jitter: bool = True

    def delay_for_attempt(self, attempt: int) -> int:
        """
        Delay after the given 1-based attempt.

        ``min(initial * factor**(attempt-1), max)``, scaled by a uniform
        factor in [0.5, 1.5] when jitter is on, rounded to whole ms.
        """
        exponent = max(attempt, 1) - 1
        try:
            delay = min(self.initial_delay_ms * (self.factor**exponent), self.max_delay_ms)
        except OverflowError:
            delay = self.max_delay_ms
        if self.jitter:
            delay *= random.uniform(0.5, 1.5)
        return int(round(delay))


@dataclass(frozen=True)
class RetryPolicy:
    """How many times a stage may run, and how long to wait in between."""

    max_attempts: int = 1
    backoff: Backoff = field(default_factory=Backoff)

    RETRYABLE: ClassVar[frozenset[StageStatus]] = frozenset({StageStatus.RETRY, StageStatus.FAIL})

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            object.__setattr__(self, "max_attempts", 1)

    def should_retry(self, status: StageStatus) -> bool:
        return status in self.RETRYABLE

    # === PRESETS ===

    @classmethod
    def none(cls) -> RetryPolicy:
        return cls(max_attempts=1)

    @classmethod
    def standard(cls) -> RetryPolicy:
        return cls(max_attempts=5, backoff=Backoff(initial_delay_ms=200, factor=2.0))

    @classmethod
    def aggressive(cls) -> RetryPolicy:
        return cls(max_attempts=5, backoff=Backoff(initial_delay_ms=500, factor=2.0))

    @classmethod
    def linear(cls) -> RetryPolicy:
        return cls(max_attempts=3, backoff=Backoff(initial_delay_ms=500, factor=1.0))

    @classmethod
    def patient(cls) -> RetryPolicy:
        return cls(max_attempts=3, backoff=Backoff(initial_delay_ms=2000, factor=3.0))

    @classmethod
    def for_node(cls, node: Node, graph: Graph, backoff: Backoff | None = None) -> RetryPolicy:
        """
        Policy for a node.

        An explicit ``max_retries`` on the node wins (even 0); otherwise
        the graph's ``default_max_retry`` applies when positive.
        """
        if node.has_attr("max_retries"):
            attempts = node.max_retries + 1
        elif graph.default_max_retry > 0:
            attempts = graph.default_max_retry + 1
        else:
            attempts = 1
        return cls(max_attempts=attempts, backoff=backoff or Backoff())


class RetryExecutor:
    """Runs a node's handler under a RetryPolicy."""

    def __init__(self, registry: HandlerRegistry, event_bus: EventBus | None = None):
        self.registry = registry
        self.event_bus = event_bus

    async def execute_with_retry(
        self,
        node: Node,
        context: Context,
        graph: Graph,
        logs_root: Path,
        policy: RetryPolicy,
        retry_counts: dict[str, int] | None = None,
        index: int = 0,
    ) -> Outcome:
        """
        Execute ``node`` up to ``policy.max_attempts`` times.

        Raises:
            HandlerNotFoundError: if no handler resolves for the node. This
                is a configuration problem and is never retried.
        """
        handler = self.registry.resolve(node)
        if handler is None:
            raise HandlerNotFoundError(node.id, node.type, node.shape)

        outcome = Outcome(status=StageStatus.FAIL, failure_reason="not executed")
        for attempt in range(1, policy.max_attempts + 1):
            try:
                outcome = await handler.execute(node, context, graph, logs_root)
            except Exception as e:
                logger.warning(f"✗ Handler for '{node.id}' raised on attempt {attempt}: {e}")
                outcome = Outcome(status=StageStatus.FAIL, failure_reason=str(e) or type(e).__name__)

            if outcome.status in (
                StageStatus.SUCCESS,
                StageStatus.PARTIAL_SUCCESS,
                StageStatus.SKIPPED,
            ):
                return outcome

            if attempt < policy.max_attempts and policy.should_retry(outcome.status):
                delay_ms = policy.backoff.delay_for_attempt(attempt)
                logger.info(
                    f"↻ Retrying '{node.id}' ({attempt}/{policy.max_attempts}) in {delay_ms}ms: "
                    f"{outcome.failure_reason or outcome.status.value}",
                    extra={"attempt": attempt, "delay_ms": delay_ms},
                )
                if delay_ms > 0:
                    await asyncio.sleep(delay_ms / 1000)
                if retry_counts is not None:
                    retry_counts[node.id] = retry_counts.get(node.id, 0) + 1
                if self.event_bus is not None:
                    await self.event_bus.emit_stage_retrying(
                        node_id=node.id, index=index, attempt=attempt, delay_ms=delay_ms
                    )
                continue

            if attempt == policy.max_attempts and node.allow_partial:
                logger.info(f"⚠ '{node.id}' exhausted retries, accepting partial result")
                return outcome.with_status(StageStatus.PARTIAL_SUCCESS, notes=PARTIAL_ACCEPTED_NOTE)
            return outcome

        return outcome
