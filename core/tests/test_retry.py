"""
Tests for retry policies, backoff and the RetryExecutor.

Run with:
    pytest core/tests/test_retry.py -v
"""

from unittest.mock import AsyncMock

import pytest

from stageflow.errors import HandlerNotFoundError
from stageflow.graph.context import Context
from stageflow.graph.edge import Graph
from stageflow.graph.node import Node
from stageflow.graph.outcome import Outcome, StageStatus
from stageflow.graph.retry import PARTIAL_ACCEPTED_NOTE, Backoff, RetryExecutor, RetryPolicy
from stageflow.handlers.base import Handler
from stageflow.handlers.registry import HandlerRegistry
from stageflow.runtime.event_bus import EventBus, EventType


@pytest.fixture(autouse=True)
def fast_sleep(monkeypatch):
    """Mock asyncio.sleep to avoid real delays from backoff."""
    mock = AsyncMock()
    monkeypatch.setattr("asyncio.sleep", mock)
    return mock


class ScriptedHandler(Handler):
    """Returns queued outcomes (or raises queued exceptions) in order."""

    def __init__(self, *results):
        self.results = list(results)
        self.calls = 0

    async def execute(self, node, context, graph, logs_root):
        self.calls += 1
        result = self.results.pop(0) if len(self.results) > 1 else self.results[0]
        if isinstance(result, Exception):
            raise result
        return result


def _executor(handler: Handler, event_bus: EventBus | None = None) -> RetryExecutor:
    return RetryExecutor(HandlerRegistry(default_handler=handler), event_bus)


def _policy(max_attempts: int) -> RetryPolicy:
    return RetryPolicy(max_attempts=max_attempts, backoff=Backoff(jitter=False))


class TestBackoff:
    def test_exponential_growth(self):
        backoff = Backoff(initial_delay_ms=200, factor=2.0, max_delay_ms=60_000, jitter=False)
        assert [backoff.delay_for_attempt(n) for n in range(1, 5)] == [200, 400, 800, 1600]

    def test_monotone_and_capped(self):
        backoff = Backoff(initial_delay_ms=100, factor=3.0, max_delay_ms=5_000, jitter=False)
        delays = [backoff.delay_for_attempt(n) for n in range(1, 12)]
        assert delays == sorted(delays)
        assert max(delays) == 5_000

    def test_very_late_attempt_is_capped(self):
        backoff = Backoff(initial_delay_ms=200, factor=2.0, max_delay_ms=60_000, jitter=False)
        assert backoff.delay_for_attempt(1100) == 60_000
        assert backoff.delay_for_attempt(10**6) == 60_000

    def test_jitter_stays_in_range(self):
        backoff = Backoff(initial_delay_ms=1000, factor=1.0, jitter=True)
        for _ in range(50):
            assert 500 <= backoff.delay_for_attempt(1) <= 1500


class TestRetryPolicy:
    def test_max_attempts_clamped(self):
        assert RetryPolicy(max_attempts=0).max_attempts == 1
        assert RetryPolicy(max_attempts=-3).max_attempts == 1

    def test_retryable_statuses(self):
        policy = RetryPolicy()
        assert policy.should_retry(StageStatus.FAIL)
        assert policy.should_retry(StageStatus.RETRY)
        assert not policy.should_retry(StageStatus.SUCCESS)
        assert not policy.should_retry(StageStatus.SKIPPED)

    def test_presets(self):
        assert RetryPolicy.none().max_attempts == 1
        assert RetryPolicy.standard().max_attempts == 5
        assert RetryPolicy.aggressive().backoff.initial_delay_ms == 500
        assert RetryPolicy.linear().backoff.factor == 1.0
        assert RetryPolicy.patient().backoff.factor == 3.0

    def test_for_node_uses_node_max_retries(self):
        graph = Graph(attrs={"default_max_retry": "5"})
        node = Node(id="n", attrs={"max_retries": "2"})
        assert RetryPolicy.for_node(node, graph).max_attempts == 3

    def test_for_node_explicit_zero_wins(self):
        graph = Graph(attrs={"default_max_retry": "5"})
        node = Node(id="n", attrs={"max_retries": "0"})
        assert RetryPolicy.for_node(node, graph).max_attempts == 1

    def test_for_node_falls_back_to_graph_default(self):
        graph = Graph(attrs={"default_max_retry": "3"})
        assert RetryPolicy.for_node(Node(id="n"), graph).max_attempts == 4
        assert RetryPolicy.for_node(Node(id="n"), Graph()).max_attempts == 1


class TestRetryExecutor:
    @pytest.mark.asyncio
    async def test_success_first_try(self, tmp_path):
        handler = ScriptedHandler(Outcome())
        outcome = await _executor(handler).execute_with_retry(
            Node(id="n"), Context(), Graph(), tmp_path, _policy(3)
        )
        assert outcome.status == StageStatus.SUCCESS
        assert handler.calls == 1

    @pytest.mark.asyncio
    async def test_always_failing_runs_max_retries_plus_one(self, tmp_path, fast_sleep):
        handler = ScriptedHandler(Outcome.fail("boom"))
        node = Node(id="n", attrs={"max_retries": "2"})
        retry_counts: dict[str, int] = {}

        outcome = await _executor(handler).execute_with_retry(
            node,
            Context(),
            Graph(),
            tmp_path,
            RetryPolicy.for_node(node, Graph(), Backoff(jitter=False)),
            retry_counts=retry_counts,
        )

        assert handler.calls == 3
        assert outcome.status == StageStatus.FAIL
        assert outcome.failure_reason == "boom"
        assert retry_counts == {"n": 2}
        assert [c.args[0] for c in fast_sleep.await_args_list] == [0.2, 0.4]

    @pytest.mark.asyncio
    async def test_many_retries_stay_under_max_delay(self, tmp_path, fast_sleep):
        handler = ScriptedHandler(Outcome.fail("down"))
        node = Node(id="n", attrs={"max_retries": "1100"})

        outcome = await _executor(handler).execute_with_retry(
            node,
            Context(),
            Graph(),
            tmp_path,
            RetryPolicy.for_node(node, Graph(), Backoff(jitter=False)),
        )

        assert outcome.status == StageStatus.FAIL
        assert handler.calls == 1101
        assert max(c.args[0] for c in fast_sleep.await_args_list) == 60.0

    @pytest.mark.asyncio
    async def test_allow_partial_on_exhaustion(self, tmp_path):
        handler = ScriptedHandler(Outcome.fail("flaky"))
        node = Node(id="n", attrs={"max_retries": "1", "allow_partial": "true"})

        outcome = await _executor(handler).execute_with_retry(
            node, Context(), Graph(), tmp_path, _policy(2)
        )

        assert handler.calls == 2
        assert outcome.status == StageStatus.PARTIAL_SUCCESS
        assert outcome.notes == PARTIAL_ACCEPTED_NOTE

    @pytest.mark.asyncio
    async def test_eventual_success(self, tmp_path):
        handler = ScriptedHandler(
            Outcome(status=StageStatus.RETRY), Outcome.fail("again"), Outcome()
        )
        outcome = await _executor(handler).execute_with_retry(
            Node(id="n"), Context(), Graph(), tmp_path, _policy(5)
        )
        assert outcome.status == StageStatus.SUCCESS
        assert handler.calls == 3

    @pytest.mark.asyncio
    async def test_exception_becomes_fail_and_is_retried(self, tmp_path):
        handler = ScriptedHandler(RuntimeError("crashed"), Outcome())
        outcome = await _executor(handler).execute_with_retry(
            Node(id="n"), Context(), Graph(), tmp_path, _policy(2)
        )
        assert outcome.status == StageStatus.SUCCESS
        assert handler.calls == 2

    @pytest.mark.asyncio
    async def test_exception_on_last_attempt(self, tmp_path):
        handler = ScriptedHandler(ValueError("bad input"))
        outcome = await _executor(handler).execute_with_retry(
            Node(id="n"), Context(), Graph(), tmp_path, _policy(1)
        )
        assert outcome.status == StageStatus.FAIL
        assert outcome.failure_reason == "bad input"

    @pytest.mark.asyncio
    async def test_skipped_is_not_retried(self, tmp_path):
        handler = ScriptedHandler(Outcome(status=StageStatus.SKIPPED))
        outcome = await _executor(handler).execute_with_retry(
            Node(id="n"), Context(), Graph(), tmp_path, _policy(3)
        )
        assert outcome.status == StageStatus.SKIPPED
        assert handler.calls == 1

    @pytest.mark.asyncio
    async def test_missing_handler_raises(self, tmp_path):
        executor = RetryExecutor(HandlerRegistry())
        with pytest.raises(HandlerNotFoundError) as exc_info:
            await executor.execute_with_retry(
                Node(id="orphan", attrs={"type": "custom"}), Context(), Graph(), tmp_path, _policy(3)
            )
        assert exc_info.value.node_id == "orphan"
        assert "type=custom" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_emits_retrying_events(self, tmp_path):
        bus = EventBus()
        handler = ScriptedHandler(Outcome.fail("x"), Outcome.fail("y"), Outcome())

        await _executor(handler, bus).execute_with_retry(
            Node(id="n"), Context(), Graph(), tmp_path, _policy(3), index=4
        )

        events = bus.get_history(event_type=EventType.STAGE_RETRYING)
        assert [e.data["attempt"] for e in events] == [1, 2]
        assert [e.data["delay_ms"] for e in events] == [200, 400]
        assert all(e.node_id == "n" and e.data["index"] == 4 for e in events)
