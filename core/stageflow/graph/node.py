"""
Node - one stage of a pipeline graph.

Nodes are produced by the graph-description parser and are read-only while
a run executes. All stage configuration lives in ``attrs``; the properties
below are typed views over it with their documented defaults.
"""

from typing import Any

from pydantic import BaseModel, Field, field_validator

from stageflow.graph.attributes import as_bool, as_int, as_str, coerce_attributes

START_SHAPE = "Mdiamond"
EXIT_SHAPE = "Msquare"
DEFAULT_SHAPE = "box"


class Node(BaseModel):
    """
    A stage in the pipeline.

    Example:
        Node(
            id="implement",
            attrs={"shape": "box", "prompt": "Implement $goal", "max_retries": "2"},
        )

    Identity is the id alone: two Node values with the same id compare equal
    even if their attributes differ (e.g. after a stylesheet overlay).
    """

    id: str
    attrs: dict[str, Any] = Field(default_factory=dict)

    @field_validator("attrs", mode="before")
    @classmethod
    def _coerce(cls, value: Any) -> dict[str, Any]:
        return coerce_attributes(value)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Node):
            return NotImplemented
        return self.id == other.id

    def __hash__(self) -> int:
        return hash(self.id)

    def get(self, key: str, default: Any = None) -> Any:
        return self.attrs.get(key, default)

    def has_attr(self, key: str) -> bool:
        return key in self.attrs

    def merge_attrs(self, overlay: dict[str, Any]) -> "Node":
        """Return a copy with ``overlay`` applied on top of the current attrs."""
        return Node(id=self.id, attrs={**self.attrs, **coerce_attributes(overlay)})

    @property
    def shape(self) -> str:
        return as_str(self.attrs.get("shape"), DEFAULT_SHAPE) or DEFAULT_SHAPE

    @property
    def type(self) -> str:
        return as_str(self.attrs.get("type"))

    @property
    def label(self) -> str:
        return as_str(self.attrs.get("label")) or self.id

    @property
    def prompt(self) -> str:
        return as_str(self.attrs.get("prompt"))

    @property
    def max_retries(self) -> int:
        return as_int(self.attrs.get("max_retries"), 0)

    @property
    def goal_gate(self) -> bool:
        return as_bool(self.attrs.get("goal_gate"))

    @property
    def retry_target(self) -> str:
        return as_str(self.attrs.get("retry_target"))

    @property
    def fallback_retry_target(self) -> str:
        return as_str(self.attrs.get("fallback_retry_target"))

    @property
    def fidelity(self) -> str:
        return as_str(self.attrs.get("fidelity"))

    @property
    def thread_id(self) -> str:
        return as_str(self.attrs.get("thread_id"))

    @property
    def timeout(self) -> int | None:
        """Timeout in milliseconds, or None when unset."""
        value = self.attrs.get("timeout")
        if value is None or isinstance(value, bool):
            return None
        if isinstance(value, int | float):
            return int(value)
        return None

    @property
    def allow_partial(self) -> bool:
        return as_bool(self.attrs.get("allow_partial"))

    @property
    def auto_status(self) -> bool:
        return as_bool(self.attrs.get("auto_status"))

    @property
    def classes(self) -> list[str]:
        raw = as_str(self.attrs.get("class"))
        return [c.strip() for c in raw.split(",") if c.strip()]

    @property
    def is_start(self) -> bool:
        return self.shape == START_SHAPE

    @property
    def is_exit(self) -> bool:
        return self.shape == EXIT_SHAPE
