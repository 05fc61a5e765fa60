"""
Graph Executor - runs a pipeline graph as a resumable state machine.

Phases: parse (when given source text) -> transforms -> validate -> execute.

The execute loop runs one stage at a time:
1. Resolve the current node (unknown ids are fatal).
2. Exit nodes run their handler, then goal gates are enforced; a failed
   gate redirects to its retry target or aborts the run.
3. Any other node runs through the RetryExecutor; its outcome is recorded,
   merged into the context and checkpointed, then edge selection picks the
   next node.
4. When no edge is selected after a success, or an exit node passes its
   gates, the run completes and a final checkpoint is written.

A checkpoint is written after every stage, so a crash loses at most the
stage that was in flight. Resuming continues from the first outgoing edge
of the last completed node.
"""

import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from stageflow.config import EngineConfig
from stageflow.errors import (
    ConfigurationError,
    ContextValueError,
    EngineError,
    GoalGateError,
    HandlerNotFoundError,
    NodeNotFoundError,
    RoutingError,
    StageOutputError,
)
from stageflow.graph.context import Context, copy_value
from stageflow.graph.edge import Graph
from stageflow.graph.edge_selector import select_edge
from stageflow.graph.goal import GoalGateChecker
from stageflow.graph.hitl import Interviewer
from stageflow.graph.node import Node
from stageflow.graph.outcome import Outcome, StageStatus
from stageflow.graph.retry import RetryExecutor, RetryPolicy
from stageflow.graph.validator import Validator
from stageflow.handlers.registry import HandlerRegistry, default_registry
from stageflow.handlers.stage import StageBackend
from stageflow.observability.logging import (
    bind_log_context,
    current_log_context,
    reset_log_context,
)
from stageflow.runtime.event_bus import EventBus
from stageflow.schemas.checkpoint import Checkpoint
from stageflow.storage.checkpoint_store import CheckpointStore
from stageflow.storage.run_directory import RunDirectory

GraphParser = Callable[[str], Graph]
GraphTransform = Callable[[Graph], Graph]

_RESTART = object()


@dataclass
class ExecutionResult:
    """Result of executing a pipeline graph."""

    success: bool
    outcome: Outcome | None = None
    completed_nodes: list[str] = field(default_factory=list)
    node_outcomes: dict[str, Outcome] = field(default_factory=dict)
    node_retries: dict[str, int] = field(default_factory=dict)
    context: dict[str, Any] = field(default_factory=dict)
    duration_ms: int = 0
    restarts: int = 0
    resumed: bool = False
    checkpoint_path: Path | None = None


@dataclass
class _RunState:
    context: Context
    completed: list[str] = field(default_factory=list)
    outcomes: dict[str, Outcome] = field(default_factory=dict)
    node_retries: dict[str, int] = field(default_factory=dict)
    last_outcome: Outcome | None = None
    stage_index: int = 0
    resumed: bool = False
    restart: bool = False


class GraphExecutor:
    """
    Executes pipeline graphs.

    Example:
        executor = GraphExecutor(event_bus=bus, interviewer=QueueInterviewer([...]))
        result = await executor.execute(graph, logs_root=Path("runs/release"))
        # after a crash:
        result = await executor.execute(graph, logs_root=Path("runs/release"), resume=True)
    """

    def __init__(
        self,
        registry: HandlerRegistry | None = None,
        event_bus: EventBus | None = None,
        interviewer: Interviewer | None = None,
        backend: StageBackend | None = None,
        transforms: Sequence[GraphTransform] = (),
        validator: Validator | None = None,
        parser: GraphParser | None = None,
        config: EngineConfig | None = None,
    ):
        """
        Initialize the executor.

        Args:
            registry: Handler registry; defaults to every built-in handler
                wired to this executor's event bus, interviewer and backend
            event_bus: Receives lifecycle events; a private bus is created
                if omitted
            interviewer: Answers human gates (default registry only)
            backend: Stage backend for box nodes (default registry only)
            transforms: Graph -> Graph functions applied after parsing and
                again after every restart
            validator: Called with the transformed graph before the first
                stage runs; must raise on error diagnostics
            parser: Turns source text into a Graph; required only when
                ``execute`` is given text instead of a Graph
            config: Engine configuration; loaded from the user config file
                if omitted
        """
        self.config = config or EngineConfig()
        self.event_bus = event_bus or EventBus()
        self.registry = registry or default_registry(
            event_bus=self.event_bus,
            interviewer=interviewer,
            backend=backend,
            default_max_parallel=self.config.default_max_parallel,
            shutdown_timeout=self.config.branch_shutdown_timeout,
            human_timeout_seconds=self.config.human_timeout_seconds,
        )
        self.transforms = list(transforms)
        self.validator = validator
        self.parser = parser
        self.retry_executor = RetryExecutor(self.registry, self.event_bus)
        self.logger = logging.getLogger(__name__)

    async def execute(
        self,
        source: Graph | str,
        logs_root: Path | str,
        resume: bool = False,
    ) -> ExecutionResult:
        """
        Execute a pipeline.

        Args:
            source: A Graph, or source text for the configured parser
            logs_root: Run directory for the checkpoint and stage artifacts
            resume: Continue from the checkpoint in ``logs_root`` if present

        Returns:
            ExecutionResult with the final outcome and run state

        Raises:
            ValidationError: If the validator reports errors
            EngineError: On configuration errors, unsatisfied goal gates
                and routing dead ends
            StageOutputError: If a handler returns context updates that are
                not plain data
        """
        logs_root = Path(logs_root)
        graph = self._prepare(source)
        if self.validator is not None:
            for diagnostic in self.validator.validate_or_raise(graph):
                self.logger.warning(f"⚠ {diagnostic}")

        self.event_bus.run_id = str(logs_root)
        outer_log_fields = current_log_context()
        bind_log_context(run_id=str(logs_root), pipeline=graph.name)
        started = time.monotonic()
        restarts = 0

        try:
            while True:
                state = await self._execute_once(graph, logs_root, resume, started)
                if not state.restart:
                    break
                restarts += 1
                self.logger.info(f"↻ Restarting pipeline '{graph.name}' (restart #{restarts})")
                graph = self._prepare(source)
                resume = False

            duration_ms = self._elapsed_ms(started)
            self.logger.info(f"\n✓ Pipeline '{graph.name}' complete in {duration_ms}ms")
            self.logger.info(f"   Path: {' → '.join(state.completed)}")
        except EngineError as e:
            duration_ms = self._elapsed_ms(started)
            self.logger.error(f"✗ Pipeline '{graph.name}' failed: {e}")
            await self.event_bus.emit_pipeline_failed(
                error=str(e), duration_ms=duration_ms, node_id=e.node_id
            )
            raise
        finally:
            reset_log_context()
            bind_log_context(**outer_log_fields)

        outcome = state.last_outcome

        return ExecutionResult(
            success=outcome is None or outcome.success or outcome.status == StageStatus.SKIPPED,
            outcome=outcome,
            completed_nodes=list(state.completed),
            node_outcomes=dict(state.outcomes),
            node_retries=dict(state.node_retries),
            context=dict(state.context.snapshot()),
            duration_ms=duration_ms,
            restarts=restarts,
            resumed=state.resumed,
            checkpoint_path=CheckpointStore(logs_root).path,
        )

    # === PHASES ===

    def _prepare(self, source: Graph | str) -> Graph:
        """Parse (if needed) and transform. Graph inputs are copied first."""
        if isinstance(source, Graph):
            graph = source.model_copy(deep=True)
        else:
            if self.parser is None:
                raise ConfigurationError("Graph source text given but no parser is configured")
            graph = self.parser(source)
        for transform in self.transforms:
            graph = transform(graph)
        return graph

    async def _execute_once(
        self, graph: Graph, logs_root: Path, resume: bool, started: float
    ) -> _RunState:
        logs_root.mkdir(parents=True, exist_ok=True)
        store = CheckpointStore(logs_root)
        run_dir = RunDirectory(logs_root)

        state = await self._initialize(graph, store, run_dir, resume)
        await self.event_bus.emit_pipeline_started(name=graph.name, run_id=str(logs_root))
        self.logger.info(f"🚀 Pipeline '{graph.name}' started in {logs_root}")

        current_id = self._determine_start(graph, state)
        while True:
            node = self._fetch_node(graph, current_id)
            bind_log_context(node_id=node.id)

            if node.is_exit:
                redirect = await self._run_exit(node, graph, state, run_dir, logs_root)
                if redirect is None:
                    break
                current_id = redirect
                continue

            next_target = await self._run_stage(node, graph, state, store, run_dir, logs_root)
            if next_target is None:
                break
            if next_target is _RESTART:
                state.restart = True
                return state
            current_id = next_target

        await self._save_checkpoint(store, state, state.completed[-1] if state.completed else None)
        await self.event_bus.emit_pipeline_completed(duration_ms=self._elapsed_ms(started))
        return state

    async def _initialize(
        self, graph: Graph, store: CheckpointStore, run_dir: RunDirectory, resume: bool
    ) -> _RunState:
        if resume and store.exists():
            checkpoint = await store.load()
            if checkpoint is not None:
                state = _RunState(
                    context=checkpoint.restore_context(),
                    completed=list(checkpoint.completed_nodes),
                    node_retries=dict(checkpoint.node_retries),
                    resumed=True,
                )
                for node_id in state.completed:
                    status = StageStatus.parse(
                        checkpoint.node_statuses.get(node_id), default=StageStatus.SUCCESS
                    )
                    state.outcomes[node_id] = Outcome(status=status)
                state.stage_index = len(state.completed)
                self.logger.info(
                    f"↻ Resuming '{graph.name}' with {len(state.completed)} completed stages"
                )
                return state

        context = Context()
        context.set("graph.goal", graph.goal)
        await run_dir.write_manifest(graph)
        return _RunState(context=context)

    def _determine_start(self, graph: Graph, state: _RunState) -> str:
        if state.resumed and state.completed:
            edges = graph.outgoing_edges(state.completed[-1])
            if edges:
                return edges[0].target

        start = graph.start_node
        if start is None:
            raise ConfigurationError("No start node found")
        return start.id

    # === STAGES ===

    async def _run_exit(
        self, node: Node, graph: Graph, state: _RunState, run_dir: RunDirectory, logs_root: Path
    ) -> str | None:
        """Run an exit node and enforce goal gates. Returns a redirect target or None."""
        handler = self._resolve_handler(node)
        try:
            outcome = await handler.execute(node, state.context, graph, logs_root)
        except Exception as e:
            outcome = Outcome.fail(str(e) or type(e).__name__)
        self._check_updates(node, outcome)
        await run_dir.write_status(node.id, outcome)
        state.outcomes[node.id] = outcome
        state.last_outcome = outcome

        gate = GoalGateChecker.check(graph, state.outcomes)
        if gate.ok:
            state.completed.append(node.id)
            return None

        failing = gate.failing_node
        target = GoalGateChecker.retry_target(failing, graph)
        if target and target in graph.nodes:
            self.logger.warning(f"↻ Goal gate '{failing.id}' unsatisfied, retrying from '{target}'")
            return target
        if target:
            raise GoalGateError(
                f"Goal gate '{failing.id}' unsatisfied and retry target '{target}' does not exist",
                node_id=failing.id,
            )
        raise GoalGateError(
            f"Goal gate '{failing.id}' unsatisfied and no retry target", node_id=failing.id
        )

    async def _run_stage(
        self,
        node: Node,
        graph: Graph,
        state: _RunState,
        store: CheckpointStore,
        run_dir: RunDirectory,
        logs_root: Path,
    ) -> Any:
        """Run one non-exit stage. Returns the next node id, None to stop, or _RESTART."""
        index = state.stage_index
        state.stage_index += 1
        context = state.context

        context.set("current_node", node.id)
        await self.event_bus.emit_stage_started(node_id=node.id, index=index)
        self.logger.info(f"\n▶ Stage {index}: {node.id}")

        policy = RetryPolicy.for_node(node, graph, self.config.default_backoff())
        started = time.monotonic()
        outcome = await self.retry_executor.execute_with_retry(
            node,
            context,
            graph,
            logs_root,
            policy,
            retry_counts=state.node_retries,
            index=index,
        )
        duration_ms = self._elapsed_ms(started)

        self._check_updates(node, outcome)
        await run_dir.write_status(node.id, outcome)
        state.completed.append(node.id)
        state.outcomes[node.id] = outcome
        state.last_outcome = outcome

        if outcome.success or outcome.status == StageStatus.SKIPPED:
            self.logger.info(f"   ✓ {node.id}: {outcome.status.value} ({duration_ms}ms)")
            await self.event_bus.emit_stage_completed(
                node_id=node.id, index=index, duration_ms=duration_ms
            )
        else:
            reason = outcome.failure_reason or outcome.status.value
            self.logger.warning(f"   ✗ {node.id}: {reason}")
            await self.event_bus.emit_stage_failed(
                node_id=node.id, index=index, error=reason, will_retry=False
            )

        context.apply_updates(outcome.context_updates)
        context.set("outcome", outcome.status.value)
        if outcome.preferred_label:
            context.set("preferred_label", outcome.preferred_label)
        context.append_log(f"{node.id}: {outcome.status.value}")

        await self._save_checkpoint(store, state, node.id)

        edge = select_edge(node, outcome, context, graph)
        if edge is None:
            if outcome.success or outcome.status == StageStatus.SKIPPED:
                return None
            raise RoutingError(f"Stage '{node.id}' failed with no outgoing edge", node_id=node.id)

        self.logger.info(f"   → {edge.target}")
        if edge.loop_restart:
            return _RESTART
        return edge.target

    # === HELPERS ===

    def _fetch_node(self, graph: Graph, node_id: str) -> Node:
        node = graph.get_node(node_id)
        if node is None:
            raise NodeNotFoundError(node_id)
        return node

    def _check_updates(self, node: Node, outcome: Outcome) -> None:
        try:
            copy_value(outcome.context_updates, "context_updates")
        except ContextValueError as e:
            raise StageOutputError(
                f"Stage '{node.id}' returned unusable context updates: {e}", node_id=node.id
            ) from e

    def _resolve_handler(self, node: Node):
        handler = self.registry.resolve(node)
        if handler is None:
            raise HandlerNotFoundError(node.id, node.type, node.shape)
        return handler

    async def _save_checkpoint(
        self, store: CheckpointStore, state: _RunState, current_node: str | None
    ) -> None:
        checkpoint = Checkpoint.capture(
            context=state.context,
            current_node=current_node,
            completed_nodes=state.completed,
            node_retries=state.node_retries,
            outcomes=state.outcomes,
        )
        await store.save(checkpoint)
        self.logger.debug(f"💾 Checkpoint saved at '{current_node}'")
        await self.event_bus.emit_checkpoint_saved(node_id=current_node)

    @staticmethod
    def _elapsed_ms(started: float) -> int:
        return int((time.monotonic() - started) * 1000)
