"""
Tests for condition expressions.
"""

import pytest

from graph_engine.engine.conditions import (
    CompoundCondition,
    Condition,
    Operator,
    evaluate_condition,
    is_valid_condition,
    parse_condition,
    resolve_path,
)
from graph_engine.exceptions import ConditionSyntaxError


CONTEXT = {
    "input": {"id": "P1", "age": 42, "tags": ["urgent", "cardio"], "name": "Ada Lovelace"},
    "aiResult": {"riskLevel": "high", "score": 0.91, "approved": False},
    "items": [{"name": "first"}, {"name": "second"}],
}


class TestResolvePath:
    """Tests for dotted path resolution."""

    def test_nested_keys(self):
        assert resolve_path(CONTEXT, "aiResult.riskLevel") == "high"
        assert resolve_path(CONTEXT, "input.tags[1]") == "cardio"
        assert resolve_path(CONTEXT, "items[0].name") == "first"

    def test_missing_path(self):
        assert resolve_path(CONTEXT, "aiResult.missing") is None
        assert resolve_path(CONTEXT, "items[5].name", "n/a") == "n/a"
        assert resolve_path(CONTEXT, "input.id.deeper") is None

    def test_attributes_never_resolve(self):
        assert resolve_path(CONTEXT, "input.name.upper") is None
        assert resolve_path(CONTEXT, "input.__class__") is None
        assert resolve_path(CONTEXT, "items.__len__", "n/a") == "n/a"
        assert evaluate_condition("input.name.upper", CONTEXT) is False
        assert evaluate_condition("input.__class__", CONTEXT) is False


class TestParseCondition:
    """Tests for parsing condition strings."""

    def test_comparison(self):
        condition = parse_condition("aiResult.riskLevel === 'high'")
        assert condition == Condition("aiResult.riskLevel", Operator.EQ, "high")

    def test_literals(self):
        assert parse_condition("input.age >= 18").value == 18
        assert parse_condition("aiResult.score > 0.5").value == 0.5
        assert parse_condition("aiResult.approved == false").value is False
        assert parse_condition("input.missing == null").value is None
        assert parse_condition("input.id in ['P1', 'P2']").value == ["P1", "P2"]

    def test_bare_path_and_negation(self):
        assert parse_condition("input.id").operator == Operator.TRUTHY
        assert parse_condition("!aiResult.approved").operator == Operator.FALSY

    def test_compound(self):
        condition = parse_condition("input.age > 18 && aiResult.riskLevel == 'high' || input.id == 'P9'")
        assert isinstance(condition, CompoundCondition)
        assert condition.mode == "any"
        assert condition.terms[0].mode == "all"

    def test_operators_inside_quotes(self):
        """Test that && inside a string literal is not treated as an operator."""
        condition = parse_condition("input.name == 'Ada && Bob'")
        assert condition.value == "Ada && Bob"

    @pytest.mark.parametrize("expression", [
        "",
        "input.age >",
        "input.age > foo",
        "input.age == 'unterminated",
        "&& input.age",
        "!input.age > 3",
        "input.name matches '['",
        "__import__('os').system('ls')",
    ])
    def test_invalid(self, expression):
        """Test that malformed or code-like expressions are rejected."""
        with pytest.raises(ConditionSyntaxError):
            parse_condition(expression)
        assert not is_valid_condition(expression)


class TestEvaluateCondition:
    """Tests for evaluating conditions against a context."""

    @pytest.mark.parametrize("expression,expected", [
        ("aiResult.riskLevel == 'high'", True),
        ("aiResult.riskLevel !== 'high'", False),
        ("input.age > 40", True),
        ("input.age <= 40", False),
        ("input.tags contains 'urgent'", True),
        ("input.name startsWith 'Ada'", True),
        ("input.name endsWith 'Ada'", False),
        ("input.id in ['P1', 'P2']", True),
        ("input.name matches '^Ada\\s'", True),
        ("aiResult.approved", False),
        ("!aiResult.approved", True),
        ("input.age > 40 && aiResult.score > 0.9", True),
        ("input.age > 50 && aiResult.score > 0.9", False),
        ("input.age > 50 || aiResult.riskLevel == 'high'", True),
    ])
    def test_evaluate(self, expression, expected):
        assert evaluate_condition(expression, CONTEXT) is expected

    def test_missing_values_are_false(self):
        """Test that comparisons against missing values do not raise."""
        assert evaluate_condition("input.missing > 3", CONTEXT) is False
        assert evaluate_condition("input.missing contains 'x'", CONTEXT) is False

    def test_type_mismatch_is_false(self):
        assert evaluate_condition("input.name > 3", CONTEXT) is False

    def test_parsed_expression_reuse(self):
        condition = parse_condition("input.id == 'P1'")
        assert evaluate_condition(condition, CONTEXT) is True
        assert evaluate_condition(condition, {"input": {"id": "P2"}}) is False
