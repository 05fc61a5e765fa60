"""
Goal gates - stages whose success is mandatory for the whole run.

A node marked ``goal_gate=true`` must have a successful (or partially
successful) outcome by the time the pipeline reaches an exit node,
whichever path led there. A gate that never ran counts as failed.
"""

from collections.abc import Mapping
from dataclasses import dataclass

from stageflow.graph.edge import Graph
from stageflow.graph.node import Node
from stageflow.graph.outcome import Outcome


@dataclass(frozen=True)
class GateResult:
    ok: bool
    failing_node: Node | None = None


class GoalGateChecker:
    """Checks goal gates and resolves where to send the run if one fails."""

    @staticmethod
    def check(graph: Graph, outcomes: Mapping[str, Outcome]) -> GateResult:
        for node in graph.nodes.values():
            if not node.goal_gate:
                continue
            outcome = outcomes.get(node.id)
            if outcome is None or not outcome.success:
                return GateResult(ok=False, failing_node=node)
        return GateResult(ok=True)

    @staticmethod
    def retry_target(node: Node, graph: Graph) -> str | None:
        """
        Resolve a retry target for a failed gate.

        Order: node retry_target, node fallback_retry_target, graph
        retry_target, graph fallback_retry_target. Existence of the target
        is the caller's concern.
        """
        for candidate in (
            node.retry_target,
            node.fallback_retry_target,
            graph.retry_target,
            graph.fallback_retry_target,
        ):
            if candidate:
                return candidate
        return None
