"""
Edge condition language.

    condition := clause ( "&&" clause )*
    clause    := key "=" value | key "!=" value | key

A bare key is true when its resolved value is non-empty. Keys resolve
against the stage outcome and the run context:

    outcome           the outcome status ("success", "fail", ...)
    preferred_label   the outcome's preferred label
    context.<name>    context["context.<name>"], then context["<name>"], then ""
    <anything else>   context["<anything else>"], then ""

Comparisons are between string forms.

``parse_condition`` is strict and is what static validation uses.
``evaluate_condition`` is lenient: it skips empty clauses and treats a
missing value as the empty string, so a graph that slipped past validation
still routes deterministically.
"""

from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from stageflow.graph.context import Context
from stageflow.graph.outcome import Outcome

CONTEXT_PREFIX = "context."


class ConditionSyntaxError(ValueError):
    """A condition expression is malformed."""

    def __init__(self, message: str, expression: str = ""):
        super().__init__(message)
        self.expression = expression


class Operator(StrEnum):
    EQ = "="
    NE = "!="
    TRUTHY = ""


@dataclass(frozen=True)
class Clause:
    key: str
    operator: Operator
    value: str = ""


def _split_clause(text: str) -> tuple[str, Operator, str | None]:
    # "!=" is checked first so "a!=b" is not read as key "a!" with value "b".
    if "!=" in text:
        key, value = text.split("!=", 1)
        return key.strip(), Operator.NE, value.strip()
    if "=" in text:
        key, value = text.split("=", 1)
        return key.strip(), Operator.EQ, value.strip()
    return text.strip(), Operator.TRUTHY, None


def parse_condition(expression: str) -> list[Clause]:
    """
    Parse a condition into clauses.

    Raises:
        ConditionSyntaxError: on an empty clause, an empty key, or a
            missing value after ``=``/``!=``.
    """
    text = (expression or "").strip()
    if not text:
        return []

    clauses = []
    for position, raw in enumerate(text.split("&&"), start=1):
        part = raw.strip()
        if not part:
            raise ConditionSyntaxError(f"Empty clause at position {position}", expression)
        key, operator, value = _split_clause(part)
        if not key:
            raise ConditionSyntaxError(f"Missing key in clause '{part}'", expression)
        if operator is not Operator.TRUTHY and not value:
            raise ConditionSyntaxError(
                f"Missing value after '{operator.value}' in clause '{part}'", expression
            )
        clauses.append(Clause(key=key, operator=operator, value=value or ""))
    return clauses


def is_valid_condition(expression: str) -> bool:
    try:
        parse_condition(expression)
    except ConditionSyntaxError:
        return False
    return True


def _stringify(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def resolve_key(key: str, outcome: Outcome, context: Context) -> str:
    """Resolve a condition key to its string value (empty if unknown)."""
    if key == "outcome":
        return outcome.status.value
    if key == "preferred_label":
        return outcome.preferred_label or ""
    if key.startswith(CONTEXT_PREFIX):
        value = context.get(key)
        if value is None:
            value = context.get(key[len(CONTEXT_PREFIX) :])
        return _stringify(value)
    return _stringify(context.get(key))


def evaluate_condition(expression: str, outcome: Outcome, context: Context) -> bool:
    """Evaluate a condition against an outcome and context. Empty is true."""
    text = (expression or "").strip()
    if not text:
        return True

    for raw in text.split("&&"):
        part = raw.strip()
        if not part:
            continue
        key, operator, value = _split_clause(part)
        actual = resolve_key(key, outcome, context)
        if operator is Operator.NE:
            if actual == (value or ""):
                return False
        elif operator is Operator.EQ:
            if actual != (value or ""):
                return False
        elif not actual:
            return False
    return True
