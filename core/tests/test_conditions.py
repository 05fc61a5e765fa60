"""
Tests for the edge condition language.
"""

import pytest

from stageflow.graph.conditions import (
    Clause,
    ConditionSyntaxError,
    Operator,
    evaluate_condition,
    is_valid_condition,
    parse_condition,
)
from stageflow.graph.context import Context
from stageflow.graph.outcome import Outcome, StageStatus


def _success():
    return Outcome(status=StageStatus.SUCCESS)


class TestParse:
    def test_empty_expression(self):
        assert parse_condition("") == []
        assert parse_condition("   ") == []

    def test_clauses(self):
        clauses = parse_condition("outcome=success && context.env!=prod && ready")
        assert clauses == [
            Clause("outcome", Operator.EQ, "success"),
            Clause("context.env", Operator.NE, "prod"),
            Clause("ready", Operator.TRUTHY, ""),
        ]

    def test_not_equal_is_not_read_as_equal(self):
        (clause,) = parse_condition("a!=b")
        assert clause.key == "a"
        assert clause.operator is Operator.NE

    @pytest.mark.parametrize(
        "expression",
        ["outcome=success && ", "&& ready", "=success", "outcome=", "outcome!="],
    )
    def test_malformed(self, expression):
        with pytest.raises(ConditionSyntaxError) as exc_info:
            parse_condition(expression)
        assert exc_info.value.expression == expression
        assert not is_valid_condition(expression)

    def test_valid(self):
        assert is_valid_condition("outcome=fail")
        assert is_valid_condition("")


class TestEvaluate:
    def test_empty_is_true(self):
        assert evaluate_condition("", _success(), Context())

    def test_outcome_key(self):
        fail = Outcome(status=StageStatus.FAIL)
        assert evaluate_condition("outcome=fail", fail, Context())
        assert not evaluate_condition("outcome=success", fail, Context())
        assert evaluate_condition("outcome!=success", fail, Context())

    def test_preferred_label_key(self):
        outcome = Outcome(preferred_label="approve")
        assert evaluate_condition("preferred_label=approve", outcome, Context())

    def test_context_prefix_falls_back_to_bare_key(self):
        context = Context({"tests_passed": True})
        assert evaluate_condition("context.tests_passed=true", _success(), context)

    def test_context_prefix_prefers_full_key(self):
        context = Context({"context.env": "staging", "env": "prod"})
        assert evaluate_condition("context.env=staging", _success(), context)

    def test_missing_key_is_empty(self):
        assert evaluate_condition("context.missing=", _success(), Context())
        assert not evaluate_condition("context.missing=something", _success(), Context())
        assert evaluate_condition("context.missing!=something", _success(), Context())

    def test_bare_key_truthiness(self):
        assert evaluate_condition("flag", _success(), Context({"flag": "x"}))
        assert not evaluate_condition("flag", _success(), Context({"flag": ""}))
        assert not evaluate_condition("flag", _success(), Context())

    def test_conjunction(self):
        context = Context({"env": "prod"})
        assert evaluate_condition("outcome=success && env=prod", _success(), context)
        assert not evaluate_condition("outcome=success && env=dev", _success(), context)

    def test_lenient_on_empty_clauses(self):
        assert evaluate_condition("outcome=success && ", _success(), Context())

    def test_numbers_compare_as_strings(self):
        assert evaluate_condition("count=3", _success(), Context({"count": 3}))
