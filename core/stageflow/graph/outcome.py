"""Stage outcomes - the typed result of running one node."""

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any


class StageStatus(StrEnum):
    """Status of a single stage execution."""

    SUCCESS = "success"
    FAIL = "fail"
    PARTIAL_SUCCESS = "partial_success"
    RETRY = "retry"
    SKIPPED = "skipped"

    @property
    def is_success(self) -> bool:
        return self in (StageStatus.SUCCESS, StageStatus.PARTIAL_SUCCESS)

    @property
    def rank(self) -> int:
        """Fan-in ordering: lower is better."""
        return _RANKS.get(self, 3)

    @classmethod
    def parse(cls, value: Any, default: "StageStatus | None" = None) -> "StageStatus":
        """Parse a serialized status, falling back to ``default`` (or FAIL)."""
        try:
            return cls(str(value))
        except ValueError:
            return default if default is not None else cls.FAIL


_RANKS = {
    StageStatus.SUCCESS: 0,
    StageStatus.PARTIAL_SUCCESS: 1,
    StageStatus.RETRY: 2,
    StageStatus.FAIL: 3,
}


@dataclass(frozen=True)
class Outcome:
    """
    Result of running a node's handler.

    Handlers create a fresh Outcome per invocation. The engine merges
    ``context_updates`` into the run context and feeds ``preferred_label``
    and ``suggested_next_ids`` to edge selection.
    """

    status: StageStatus = StageStatus.SUCCESS
    preferred_label: str = ""
    suggested_next_ids: tuple[str, ...] = ()
    context_updates: dict[str, Any] = field(default_factory=dict)
    notes: str = ""
    failure_reason: str = ""

    def __post_init__(self) -> None:
        if not isinstance(self.status, StageStatus):
            object.__setattr__(self, "status", StageStatus(self.status))
        if not isinstance(self.suggested_next_ids, tuple):
            object.__setattr__(self, "suggested_next_ids", tuple(self.suggested_next_ids))

    @property
    def success(self) -> bool:
        return self.status.is_success

    def with_status(self, status: StageStatus, notes: str | None = None) -> "Outcome":
        """Return a copy with a different status (and optionally notes)."""
        return Outcome(
            status=status,
            preferred_label=self.preferred_label,
            suggested_next_ids=self.suggested_next_ids,
            context_updates=dict(self.context_updates),
            notes=self.notes if notes is None else notes,
            failure_reason=self.failure_reason,
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize in the shape written to a stage's status.json."""
        data: dict[str, Any] = {
            "outcome": self.status.value,
            "preferred_next_label": self.preferred_label,
            "suggested_next_ids": list(self.suggested_next_ids),
            "context_updates": dict(self.context_updates),
            "notes": self.notes,
        }
        if self.failure_reason:
            data["failure_reason"] = self.failure_reason
        return data

    @classmethod
    def fail(cls, reason: str, **kwargs: Any) -> "Outcome":
        return cls(status=StageStatus.FAIL, failure_reason=reason, **kwargs)
