"""
Validation seam.

Lint rules live outside the engine. The engine only needs a validator
exposing ``validate_or_raise(graph) -> list[Diagnostic]`` that raises
ValidationError when any diagnostic is an error; warnings are returned and
logged, and the run proceeds.
"""

from enum import StrEnum
from typing import Protocol

from pydantic import BaseModel

from stageflow.graph.edge import Graph


class Severity(StrEnum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class Diagnostic(BaseModel):
    """One finding from a lint rule."""

    rule: str
    severity: Severity
    message: str
    node_id: str | None = None
    edge: tuple[str, str] | None = None
    fix: str | None = None

    def __str__(self) -> str:
        location = ""
        if self.node_id:
            location = f" [node {self.node_id}]"
        elif self.edge:
            location = f" [edge {self.edge[0]} -> {self.edge[1]}]"
        return f"{self.severity.value}: {self.rule}{location}: {self.message}"


class ValidationError(Exception):
    """Raised when a graph has error-level diagnostics."""

    def __init__(self, diagnostics: list[Diagnostic]):
        self.diagnostics = diagnostics
        errors = [d for d in diagnostics if d.severity == Severity.ERROR]
        super().__init__("Validation failed: " + "; ".join(str(d) for d in errors))


class Validator(Protocol):
    def validate_or_raise(self, graph: Graph) -> list[Diagnostic]: ...


def raise_for_errors(diagnostics: list[Diagnostic]) -> list[Diagnostic]:
    """Raise ValidationError if any diagnostic is an error, else return them."""
    if any(d.severity == Severity.ERROR for d in diagnostics):
        raise ValidationError(diagnostics)
    return diagnostics
