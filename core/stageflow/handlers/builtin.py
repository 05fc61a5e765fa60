"""Trivial built-in handlers: start, exit, conditional and fan-in."""

import logging
from pathlib import Path

from stageflow.graph.context import Context
from stageflow.graph.edge import Graph
from stageflow.graph.node import Node
from stageflow.graph.outcome import Outcome, StageStatus
from stageflow.handlers.base import Handler

logger = logging.getLogger(__name__)

PARALLEL_RESULTS_KEY = "parallel.results"


class StartHandler(Handler):
    async def execute(self, node: Node, context: Context, graph: Graph, logs_root: Path) -> Outcome:
        return Outcome(status=StageStatus.SUCCESS)


class ExitHandler(Handler):
    async def execute(self, node: Node, context: Context, graph: Graph, logs_root: Path) -> Outcome:
        return Outcome(status=StageStatus.SUCCESS)


class ConditionalHandler(Handler):
    """No-op stage; routing happens in edge selection."""

    async def execute(self, node: Node, context: Context, graph: Graph, logs_root: Path) -> Outcome:
        return Outcome(status=StageStatus.SUCCESS, notes=f"Conditional node evaluated: {node.id}")


class FanInHandler(Handler):
    """
    Picks the best result of a preceding parallel node.

    Reads the serialized branch results from ``parallel.results`` and ranks
    them success > partial_success > retry > fail, ties broken by node id.
    """

    async def execute(self, node: Node, context: Context, graph: Graph, logs_root: Path) -> Outcome:
        results = context.get(PARALLEL_RESULTS_KEY)
        if not results:
            return Outcome.fail("No parallel results to evaluate")

        best = min(
            results,
            key=lambda r: (
                StageStatus.parse(r.get("status")).rank,
                str(r.get("node_id", "")),
            ),
        )
        logger.info(f"⑂ Fan-in at '{node.id}' selected '{best.get('node_id')}' ({best.get('status')})")
        return Outcome(
            status=StageStatus.SUCCESS,
            context_updates={
                "parallel.fan_in.best_id": best.get("node_id"),
                "parallel.fan_in.best_outcome": best.get("status"),
            },
            notes=f"Selected best candidate: {best.get('node_id')}",
        )
