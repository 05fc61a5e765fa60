"""
Tests for parallel fan-out and fan-in.

Covers:
- Concurrency cap via max_parallel
- Join policies (wait_all, first_success)
- Branch isolation and result ordering
- Exceptions inside a branch
- Fan-in selection from parallel.results
"""

import asyncio
import threading
import time

import pytest

from stageflow.graph.context import Context
from stageflow.graph.edge import Edge, Graph
from stageflow.graph.node import Node
from stageflow.graph.outcome import Outcome, StageStatus
from stageflow.handlers.base import FunctionHandler, Handler
from stageflow.handlers.builtin import PARALLEL_RESULTS_KEY, FanInHandler
from stageflow.handlers.parallel import ParallelHandler
from stageflow.handlers.registry import HandlerRegistry
from stageflow.runtime.event_bus import EventBus, EventType


class ConcurrencyTracker(Handler):
    """Tracks how many branches run at once; raises for ids in ``failing``."""

    def __init__(self, failing: set[str] | None = None, delays: dict[str, float] | None = None):
        self.failing = failing or set()
        self.delays = delays or {}
        self.active = 0
        self.max_active = 0
        self.finished: list[str] = []

    async def execute(self, node, context, graph, logs_root):
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await asyncio.sleep(self.delays.get(node.id, 0.01))
            context.set("written_by", node.id)
            if node.id in self.failing:
                raise RuntimeError(f"{node.id} exploded")
            return Outcome(status=StageStatus.SUCCESS, notes=f"ran {node.id}")
        finally:
            self.active -= 1
            self.finished.append(node.id)


def _fan_out_graph(branch_ids: list[str], **parallel_attrs) -> Graph:
    graph = Graph()
    graph.add_node(Node(id="fan", attrs={"shape": "component", **parallel_attrs}))
    for branch_id in branch_ids:
        graph.add_node(Node(id=branch_id, attrs={"type": "branch"}))
        graph.add_edge(Edge(source="fan", target=branch_id))
    return graph


def _handler(tracker: Handler, event_bus: EventBus | None = None) -> ParallelHandler:
    registry = HandlerRegistry()
    registry.register("branch", tracker)
    return ParallelHandler(registry, event_bus=event_bus)


class TestParallelHandler:
    @pytest.mark.asyncio
    async def test_wait_all_with_one_failure(self, tmp_path):
        tracker = ConcurrencyTracker(failing={"b"})
        graph = _fan_out_graph(["a", "b", "c"], max_parallel="2")

        outcome = await _handler(tracker).execute(graph.nodes["fan"], Context(), graph, tmp_path)

        assert tracker.max_active <= 2
        assert outcome.status == StageStatus.PARTIAL_SUCCESS
        assert outcome.notes == "2/3 branches succeeded"

    @pytest.mark.asyncio
    async def test_wait_all_all_succeed(self, tmp_path):
        graph = _fan_out_graph(["a", "b"])
        outcome = await _handler(ConcurrencyTracker()).execute(
            graph.nodes["fan"], Context(), graph, tmp_path
        )
        assert outcome.status == StageStatus.SUCCESS
        assert outcome.notes == "All 2 branches succeeded"

    @pytest.mark.asyncio
    async def test_first_success(self, tmp_path):
        graph = _fan_out_graph(["a", "b", "c"], join_policy="first_success")
        outcome = await _handler(ConcurrencyTracker(failing={"a", "c"})).execute(
            graph.nodes["fan"], Context(), graph, tmp_path
        )
        assert outcome.status == StageStatus.SUCCESS
        assert outcome.notes == "At least one branch succeeded"

    @pytest.mark.asyncio
    async def test_first_success_none_succeed(self, tmp_path):
        graph = _fan_out_graph(["a", "b"], join_policy="first_success")
        outcome = await _handler(ConcurrencyTracker(failing={"a", "b"})).execute(
            graph.nodes["fan"], Context(), graph, tmp_path
        )
        assert outcome.status == StageStatus.FAIL
        assert outcome.notes == "No branches succeeded"

    @pytest.mark.asyncio
    async def test_results_in_branch_order(self, tmp_path):
        # "a" finishes last but is still reported first.
        tracker = ConcurrencyTracker(delays={"a": 0.05, "b": 0.0, "c": 0.02})
        graph = _fan_out_graph(["a", "b", "c"], max_parallel="3")
        context = Context()

        outcome = await _handler(tracker).execute(graph.nodes["fan"], context, graph, tmp_path)

        assert tracker.finished[-1] == "a"
        results = context.get(PARALLEL_RESULTS_KEY)
        assert [r["node_id"] for r in results] == ["a", "b", "c"]
        assert outcome.context_updates[PARALLEL_RESULTS_KEY] == results

    @pytest.mark.asyncio
    async def test_branches_do_not_touch_parent_context(self, tmp_path):
        graph = _fan_out_graph(["a", "b"])
        context = Context({"shared": "parent"})

        await _handler(ConcurrencyTracker()).execute(graph.nodes["fan"], context, graph, tmp_path)

        assert not context.has("written_by")
        assert context.get("shared") == "parent"

    @pytest.mark.asyncio
    async def test_exception_recorded_as_fail(self, tmp_path):
        graph = _fan_out_graph(["a", "b"])
        context = Context()
        await _handler(ConcurrencyTracker(failing={"b"})).execute(
            graph.nodes["fan"], context, graph, tmp_path
        )
        results = {r["node_id"]: r for r in context.get(PARALLEL_RESULTS_KEY)}
        assert results["a"]["status"] == "success"
        assert results["b"]["status"] == "fail"
        assert results["b"]["failure_reason"] == "b exploded"

    @pytest.mark.asyncio
    async def test_missing_branch_handler(self, tmp_path):
        graph = _fan_out_graph(["a"])
        graph.add_node(Node(id="mystery", attrs={"type": "unknown", "shape": "none"}))
        graph.add_edge(Edge(source="fan", target="mystery"))
        context = Context()

        outcome = await _handler(ConcurrencyTracker()).execute(
            graph.nodes["fan"], context, graph, tmp_path
        )

        assert outcome.status == StageStatus.PARTIAL_SUCCESS
        results = context.get(PARALLEL_RESULTS_KEY)
        assert results[1]["failure_reason"] == "No handler for node: mystery"

    @pytest.mark.asyncio
    async def test_no_branches(self, tmp_path):
        graph = _fan_out_graph([])
        outcome = await _handler(ConcurrencyTracker()).execute(
            graph.nodes["fan"], Context(), graph, tmp_path
        )
        assert outcome.status == StageStatus.SUCCESS
        assert outcome.notes == "No branches to execute"

    @pytest.mark.asyncio
    async def test_events(self, tmp_path):
        bus = EventBus()
        graph = _fan_out_graph(["a", "b"])
        await _handler(ConcurrencyTracker(failing={"b"}), bus).execute(
            graph.nodes["fan"], Context(), graph, tmp_path
        )

        types = [e.type for e in bus.get_history()]
        assert types[0] == EventType.PARALLEL_STARTED
        assert types[-1] == EventType.PARALLEL_COMPLETED
        assert types.count(EventType.PARALLEL_BRANCH_STARTED) == 2
        assert types.count(EventType.PARALLEL_BRANCH_COMPLETED) == 2

        completed = bus.get_history(event_type=EventType.PARALLEL_COMPLETED)[0]
        assert completed.data["success_count"] == 1
        assert completed.data["failure_count"] == 1


class TestBlockingBranches:
    @pytest.mark.asyncio
    async def test_sync_handlers_run_side_by_side(self, tmp_path):
        # Each branch blocks until all three are inside it at once.
        barrier = threading.Barrier(3, timeout=5)

        def rendezvous(node, context, graph, logs_root):
            barrier.wait()
            return Outcome(status=StageStatus.SUCCESS)

        graph = _fan_out_graph(["a", "b", "c"], max_parallel="3")
        outcome = await _handler(FunctionHandler(rendezvous)).execute(
            graph.nodes["fan"], Context(), graph, tmp_path
        )

        assert outcome.status == StageStatus.SUCCESS
        assert outcome.notes == "All 3 branches succeeded"

    @pytest.mark.asyncio
    async def test_sync_handlers_respect_max_parallel(self, tmp_path):
        lock = threading.Lock()
        active = 0
        peak = 0

        def blocking(node, context, graph, logs_root):
            nonlocal active, peak
            with lock:
                active += 1
                peak = max(peak, active)
            time.sleep(0.05)
            with lock:
                active -= 1
            return Outcome(status=StageStatus.SUCCESS)

        graph = _fan_out_graph(["a", "b", "c", "d"], max_parallel="2")
        outcome = await _handler(FunctionHandler(blocking)).execute(
            graph.nodes["fan"], Context(), graph, tmp_path
        )

        assert outcome.status == StageStatus.SUCCESS
        assert peak == 2


class TestFanIn:
    @pytest.mark.asyncio
    async def test_selects_best_status_then_id(self, tmp_path):
        context = Context(
            {
                PARALLEL_RESULTS_KEY: [
                    {"node_id": "c", "status": "partial_success"},
                    {"node_id": "b", "status": "success"},
                    {"node_id": "a", "status": "success"},
                    {"node_id": "d", "status": "fail"},
                ]
            }
        )
        outcome = await FanInHandler().execute(Node(id="join"), context, Graph(), tmp_path)

        assert outcome.status == StageStatus.SUCCESS
        assert outcome.context_updates["parallel.fan_in.best_id"] == "a"
        assert outcome.context_updates["parallel.fan_in.best_outcome"] == "success"
        assert outcome.notes == "Selected best candidate: a"

    @pytest.mark.asyncio
    async def test_retry_beats_fail(self, tmp_path):
        context = Context(
            {
                PARALLEL_RESULTS_KEY: [
                    {"node_id": "a", "status": "fail"},
                    {"node_id": "b", "status": "retry"},
                ]
            }
        )
        outcome = await FanInHandler().execute(Node(id="join"), context, Graph(), tmp_path)
        assert outcome.context_updates["parallel.fan_in.best_id"] == "b"

    @pytest.mark.asyncio
    async def test_no_results(self, tmp_path):
        outcome = await FanInHandler().execute(Node(id="join"), Context(), Graph(), tmp_path)
        assert outcome.status == StageStatus.FAIL
        assert outcome.failure_reason == "No parallel results to evaluate"
