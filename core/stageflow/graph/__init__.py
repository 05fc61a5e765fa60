"""Graph structures, run state and routing: Nodes, Edges, Context, Outcomes, Retry."""

from stageflow.graph.conditions import (
    ConditionSyntaxError,
    evaluate_condition,
    is_valid_condition,
    parse_condition,
)
from stageflow.graph.context import Context
from stageflow.graph.edge import Edge, Graph
from stageflow.graph.edge_selector import normalize_label, select_edge
from stageflow.graph.goal import GateResult, GoalGateChecker
from stageflow.graph.node import Node
from stageflow.graph.outcome import Outcome, StageStatus
from stageflow.graph.retry import Backoff, RetryExecutor, RetryPolicy

__all__ = [
    # Structure
    "Node",
    "Edge",
    "Graph",
    # Run state
    "Context",
    "Outcome",
    "StageStatus",
    # Routing
    "select_edge",
    "normalize_label",
    "parse_condition",
    "evaluate_condition",
    "is_valid_condition",
    "ConditionSyntaxError",
    "GoalGateChecker",
    "GateResult",
    # Retry
    "Backoff",
    "RetryPolicy",
    "RetryExecutor",
]
