"""
Checkpoint Schema - resumable snapshot of a pipeline run.

One checkpoint per run directory, rewritten after every stage and at run
end. On resume the executor rebuilds the context from ``context``/``logs``,
treats ``completed_nodes`` as done, and restarts from the first outgoing
edge of the last completed node. ``current_node`` is informational: it
records the node that was active when the checkpoint was written.
"""

from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, Field

from stageflow.graph.context import Context
from stageflow.graph.outcome import Outcome


def _now() -> str:
    return datetime.now(UTC).isoformat()


class Checkpoint(BaseModel):
    """Serialized run state."""

    timestamp: str = Field(default_factory=_now)  # ISO 8601
    current_node: str | None = None
    completed_nodes: list[str] = Field(default_factory=list)
    node_retries: dict[str, int] = Field(default_factory=dict)
    context: dict[str, Any] = Field(default_factory=dict)
    logs: list[str] = Field(default_factory=list)
    node_statuses: dict[str, str] = Field(default_factory=dict)

    model_config = {"extra": "allow"}

    @classmethod
    def capture(
        cls,
        context: Context,
        current_node: str | None,
        completed_nodes: list[str],
        node_retries: Mapping[str, int],
        outcomes: Mapping[str, Outcome],
    ) -> "Checkpoint":
        """Build a checkpoint from live run state."""
        return cls(
            current_node=current_node,
            completed_nodes=list(completed_nodes),
            node_retries=dict(node_retries),
            context=dict(context.snapshot()),
            logs=context.logs,
            node_statuses={node_id: o.status.value for node_id, o in outcomes.items()},
        )

    def restore_context(self) -> Context:
        return Context(self.context, self.logs)
