"""
Fidelity - how much prior-run context is carried into a stage's prompt.

Modes, most to least verbose:
    full            no preamble; the stage gets its own prompt only
    summary:high    goal, last stage/outcome/response and context.* values
    summary:medium  goal, last stage/outcome and a response excerpt
    compact         goal, last stage and last outcome (default)
    summary:low     goal and current status
    truncate        goal only

Resolution order is edge, then node, then graph ``default_fidelity``.
Unknown modes fall back to the default.
"""

from stageflow.graph.context import Context
from stageflow.graph.edge import Edge, Graph
from stageflow.graph.node import Node

FIDELITY_MODES = ("full", "truncate", "compact", "summary:low", "summary:medium", "summary:high")
DEFAULT_FIDELITY = "compact"


def is_valid_fidelity(mode: str) -> bool:
    return mode in FIDELITY_MODES


def resolve_fidelity(node: Node | None, graph: Graph | None, edge: Edge | None = None) -> str:
    for source in (edge, node):
        if source is not None and source.fidelity:
            mode = source.fidelity
            break
    else:
        mode = graph.default_fidelity if graph is not None and graph.default_fidelity else ""
    return mode if is_valid_fidelity(mode) else DEFAULT_FIDELITY


def build_preamble(node: Node, context: Context, graph: Graph) -> str:
    """Summarize prior progress for ``node`` at its resolved fidelity."""
    mode = resolve_fidelity(node, graph)
    if mode == "full":
        return ""

    lines = []
    if graph.goal:
        lines.append(f"Goal: {graph.goal}")
    if mode == "truncate":
        return "\n".join(lines)

    last_stage = context.get("last_stage")
    outcome = context.get("outcome")
    last_response = context.get("last_response")

    if mode == "summary:low":
        if outcome:
            lines.append(f"Current status: {outcome}")
    elif mode == "compact":
        if last_stage:
            lines.append(f"Last completed stage: {last_stage}")
        if outcome:
            lines.append(f"Last outcome: {outcome}")
    else:
        if last_stage:
            lines.append(f"Last stage: {last_stage}")
        if outcome:
            lines.append(f"Outcome: {outcome}")
        if last_response:
            prefix = "Last response excerpt" if mode == "summary:medium" else "Last response"
            lines.append(f"{prefix}: {last_response}")
        if mode == "summary:high":
            snapshot = context.snapshot()
            context_keys = [k for k in snapshot if k.startswith("context.")]
            if context_keys:
                lines.append("Context values:")
                lines.extend(f"  {key}: {snapshot[key]}" for key in context_keys)

    return "\n".join(lines)
