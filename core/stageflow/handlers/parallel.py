"""
Parallel fan-out.

Every outgoing edge of a parallel node is a branch. Each branch runs its
target's handler once, as its own asyncio task, on a private clone of the
run context, so branches never share mutable state. Concurrency is capped
by ``max_parallel``.

Results are collected in branch (edge) order regardless of which branch
finishes first, folded into one outcome by the node's ``join_policy``, and
serialized into ``parallel.results`` for a downstream fan-in node.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

from stageflow.graph.attributes import as_int, as_str
from stageflow.graph.context import Context
from stageflow.graph.edge import Graph
from stageflow.graph.node import Node
from stageflow.graph.outcome import Outcome, StageStatus
from stageflow.handlers.base import Handler
from stageflow.handlers.builtin import PARALLEL_RESULTS_KEY
from stageflow.observability.logging import bind_log_context

if TYPE_CHECKING:
    from stageflow.handlers.registry import HandlerRegistry
    from stageflow.runtime.event_bus import EventBus

logger = logging.getLogger(__name__)

DEFAULT_MAX_PARALLEL = 4
DEFAULT_JOIN_POLICY = "wait_all"
DEFAULT_SHUTDOWN_TIMEOUT = 30.0


@dataclass(frozen=True)
class BranchResult:
    node_id: str
    outcome: Outcome

    def to_dict(self) -> dict[str, Any]:
        return {
            "node_id": self.node_id,
            "status": self.outcome.status.value,
            "notes": self.outcome.notes,
            "failure_reason": self.outcome.failure_reason,
        }


class ParallelHandler(Handler):
    """Runs a node's branches concurrently and joins their outcomes."""

    def __init__(
        self,
        registry: HandlerRegistry,
        event_bus: EventBus | None = None,
        default_max_parallel: int = DEFAULT_MAX_PARALLEL,
        shutdown_timeout: float = DEFAULT_SHUTDOWN_TIMEOUT,
    ):
        """
        Args:
            registry: Resolves each branch target's handler
            event_bus: Receives parallel lifecycle events
            default_max_parallel: Concurrency cap when the node sets none
            shutdown_timeout: Seconds to wait for cancelled branches on an
                exception path before giving up on them
        """
        self.registry = registry
        self.event_bus = event_bus
        self.default_max_parallel = default_max_parallel
        self.shutdown_timeout = shutdown_timeout

    async def execute(self, node: Node, context: Context, graph: Graph, logs_root: Path) -> Outcome:
        branches = [e for e in graph.outgoing_edges(node.id) if e.target in graph.nodes]
        if not branches:
            return Outcome(status=StageStatus.SUCCESS, notes="No branches to execute")

        join_policy = as_str(node.get("join_policy"), DEFAULT_JOIN_POLICY) or DEFAULT_JOIN_POLICY
        max_parallel = max(as_int(node.get("max_parallel"), self.default_max_parallel), 1)

        logger.info(
            f"⑂ Fan-out at '{node.id}': {len(branches)} branches, "
            f"max_parallel={max_parallel}, join_policy={join_policy}"
        )
        if self.event_bus is not None:
            await self.event_bus.emit_parallel_started(node_id=node.id, branch_count=len(branches))

        start = time.monotonic()
        results = await self._execute_branches(
            node, [graph.nodes[e.target] for e in branches], context, graph, logs_root, max_parallel
        )
        duration_ms = int((time.monotonic() - start) * 1000)

        status, notes = self._join(join_policy, results)
        serialized = [r.to_dict() for r in results]
        context.set(PARALLEL_RESULTS_KEY, serialized)

        if self.event_bus is not None:
            await self.event_bus.emit_parallel_completed(
                node_id=node.id,
                duration_ms=duration_ms,
                success_count=sum(1 for r in results if r.outcome.status == StageStatus.SUCCESS),
                failure_count=sum(1 for r in results if r.outcome.status == StageStatus.FAIL),
            )
        logger.info(f"⑂ Join at '{node.id}': {notes}")

        return Outcome(
            status=status,
            notes=notes,
            context_updates={PARALLEL_RESULTS_KEY: serialized},
        )

    async def _execute_branches(
        self,
        parent: Node,
        targets: list[Node],
        context: Context,
        graph: Graph,
        logs_root: Path,
        max_parallel: int,
    ) -> list[BranchResult]:
        semaphore = asyncio.Semaphore(max_parallel)
        tasks: list[tuple[str, asyncio.Task[Outcome]]] = []
        for index, target in enumerate(targets):
            branch_context = context.clone()
            task = asyncio.create_task(
                self._run_branch(semaphore, parent, target, index, branch_context, graph, logs_root),
                name=f"branch:{parent.id}->{target.id}",
            )
            tasks.append((target.id, task))

        try:
            results = []
            for node_id, task in tasks:
                try:
                    outcome = await task
                except Exception as e:
                    outcome = Outcome.fail(str(e) or type(e).__name__)
                results.append(BranchResult(node_id=node_id, outcome=outcome))
            return results
        finally:
            pending = [task for _, task in tasks if not task.done()]
            if pending:
                logger.warning(f"Cancelling {len(pending)} unfinished branches of '{parent.id}'")
                for task in pending:
                    task.cancel()
                _, still_running = await asyncio.wait(pending, timeout=self.shutdown_timeout)
                if still_running:
                    logger.error(
                        f"{len(still_running)} branches of '{parent.id}' did not stop within "
                        f"{self.shutdown_timeout}s"
                    )

    async def _run_branch(
        self,
        semaphore: asyncio.Semaphore,
        parent: Node,
        target: Node,
        index: int,
        branch_context: Context,
        graph: Graph,
        logs_root: Path,
    ) -> Outcome:
        async with semaphore:
            # Own task, so the parent's node_id binding is untouched.
            bind_log_context(node_id=target.id)
            if self.event_bus is not None:
                await self.event_bus.emit_parallel_branch_started(
                    node_id=parent.id, branch=target.id, index=index
                )
            start = time.monotonic()
            outcome = await self._execute_target(target, branch_context, graph, logs_root)
            if self.event_bus is not None:
                await self.event_bus.emit_parallel_branch_completed(
                    node_id=parent.id,
                    branch=target.id,
                    index=index,
                    duration_ms=int((time.monotonic() - start) * 1000),
                    success=outcome.success,
                )
            return outcome

    async def _execute_target(
        self, target: Node, branch_context: Context, graph: Graph, logs_root: Path
    ) -> Outcome:
        handler = self.registry.resolve(target)
        if handler is None:
            return Outcome.fail(f"No handler for node: {target.id}")
        try:
            return await handler.execute(target, branch_context, graph, logs_root)
        except Exception as e:
            logger.warning(f"✗ Branch '{target.id}' raised: {e}")
            return Outcome.fail(str(e) or type(e).__name__)

    @staticmethod
    def _join(policy: str, results: list[BranchResult]) -> tuple[StageStatus, str]:
        total = len(results)
        success_count = sum(1 for r in results if r.outcome.status == StageStatus.SUCCESS)
        fail_count = sum(1 for r in results if r.outcome.status == StageStatus.FAIL)

        if policy == "wait_all":
            if fail_count == 0:
                return StageStatus.SUCCESS, f"All {total} branches succeeded"
            return StageStatus.PARTIAL_SUCCESS, f"{success_count}/{total} branches succeeded"
        if policy == "first_success":
            if success_count > 0:
                return StageStatus.SUCCESS, "At least one branch succeeded"
            return StageStatus.FAIL, "No branches succeeded"
        return StageStatus.SUCCESS, f"Branches completed with policy: {policy}"
