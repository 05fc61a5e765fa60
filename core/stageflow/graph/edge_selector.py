"""
Edge selection - choosing the next stage after a node completes.

Rules are tried in order and the first one that yields an edge wins:

1. Condition match: edges whose non-empty condition evaluates true,
   ranked by highest weight, then smallest target id.
2. Preferred label: the outcome's preferred label, normalized, equals an
   edge's normalized label.
3. Suggested next ids: the first suggested id that is an edge target.
4. Fallback: edges with no condition, ranked like rule 1.

None means either "no outgoing edges" or "nothing matched". The executor
treats both the same: a clean stop after success, a fatal dead end after
failure.
"""

import re
from collections.abc import Iterable

from stageflow.graph.conditions import evaluate_condition
from stageflow.graph.context import Context
from stageflow.graph.edge import Edge, Graph
from stageflow.graph.node import Node
from stageflow.graph.outcome import Outcome

_ACCELERATOR_PATTERNS = (
    re.compile(r"^\[.\]\s*"),  # [Y] Yes
    re.compile(r"^.\)\s*"),  # Y) Yes
    re.compile(r"^.\s+-\s*"),  # Y - Yes
)


def normalize_label(label: str) -> str:
    """Trim, lowercase and strip one leading accelerator marker."""
    text = (label or "").strip().lower()
    for pattern in _ACCELERATOR_PATTERNS:
        stripped, count = pattern.subn("", text, count=1)
        if count:
            return stripped.strip()
    return text


def best_by_weight(edges: Iterable[Edge]) -> Edge | None:
    """Highest weight first, then lexicographically smallest target."""
    return min(edges, key=lambda e: (-e.weight, e.target), default=None)


def select_edge(node: Node, outcome: Outcome, context: Context, graph: Graph) -> Edge | None:
    edges = graph.outgoing_edges(node.id)
    if not edges:
        return None

    matched = [
        e for e in edges if e.condition and evaluate_condition(e.condition, outcome, context)
    ]
    if matched:
        return best_by_weight(matched)

    if outcome.preferred_label:
        wanted = normalize_label(outcome.preferred_label)
        for edge in edges:
            if normalize_label(edge.label) == wanted:
                return edge

    for suggested in outcome.suggested_next_ids:
        for edge in edges:
            if edge.target == suggested:
                return edge

    return best_by_weight(e for e in edges if not e.condition)
