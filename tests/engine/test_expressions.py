"""Tests for the gate condition language."""

import pytest

from arcanum.engine.expressions import (
    MISSING,
    And,
    Compare,
    ExpressionSyntaxError,
    FieldPath,
    Length,
    Literal,
    Not,
    Quantifier,
    compare_values,
    evaluate_expression,
    is_truthy,
    parse_expression,
    tokenize,
)


class TestTokenize:
    def test_operators(self):
        kinds = [(t.kind, t.text) for t in tokenize("state.a?.b !== 'x'")]
        assert kinds == [
            ("IDENT", "state"),
            ("OP", "."),
            ("IDENT", "a"),
            ("OP", "?."),
            ("IDENT", "b"),
            ("OP", "!=="),
            ("STRING", "'x'"),
        ]

    def test_rejects_unknown_character(self):
        with pytest.raises(ExpressionSyntaxError, match="Unexpected character"):
            tokenize("state.a + 1")


class TestParse:
    def test_length_comparison(self):
        node = parse_expression("state.tasks.length > 0")
        assert node == Compare(Length(FieldPath(("tasks",))), ">", Literal(0))

    def test_and_not(self):
        node = parse_expression("!state.a && state.b")
        assert isinstance(node, And)
        assert isinstance(node.left, Not)

    def test_quantifier(self):
        node = parse_expression("state.tasks?.every(t => t.status === 'done')")
        assert isinstance(node, Quantifier)
        assert node.kind == "every"
        assert node.null_safe is True
        assert node.item_field == "status"

    def test_parentheses(self):
        node = parse_expression("!(state.a || state.b)")
        assert isinstance(node, Not)

    @pytest.mark.parametrize(
        "text",
        [
            "",
            "tasks.length > 0",
            "state.a ===",
            "state.a === state.b",
            "state.tasks.every(t => x.status === 'done')",
            "state.tasks.filter(t => t.done)",
            "(state.a",
            "state.a; state.b",
        ],
    )
    def test_unsupported(self, text):
        with pytest.raises(ExpressionSyntaxError):
            parse_expression(text)


class TestEvaluate:
    def test_decompose_gates(self):
        has_tasks = "state.tasks && state.tasks.length > 0"
        no_tasks = "!state.tasks || state.tasks.length === 0"

        assert evaluate_expression(has_tasks, {}) is False
        assert evaluate_expression(no_tasks, {}) is True

        assert evaluate_expression(has_tasks, {"tasks": []}) is False
        assert evaluate_expression(no_tasks, {"tasks": []}) is True

        state = {"tasks": [{"id": "1", "status": "pending"}]}
        assert evaluate_expression(has_tasks, state) is True
        assert evaluate_expression(no_tasks, state) is False

    def test_every(self):
        check = "state.tasks.every(t => t.status === 'done')"
        assert evaluate_expression(check, {"tasks": [{"status": "done"}, {"status": "done"}]})
        assert not evaluate_expression(check, {"tasks": [{"status": "done"}, {"status": "open"}]})
        # Vacuous truth
        assert evaluate_expression(check, {"tasks": []})

    def test_every_on_missing_list(self):
        assert evaluate_expression("state.tasks?.every(t => t.status === 'done')", {}) is True
        assert evaluate_expression("state.tasks.every(t => t.status === 'done')", {}) is False

    def test_some(self):
        check = "state.tasks?.some(t => t.status !== 'done')"
        assert evaluate_expression(check, {"tasks": [{"status": "done"}, {"status": "open"}]})
        assert not evaluate_expression(check, {"tasks": [{"status": "done"}]})
        assert not evaluate_expression(check, {})

    def test_nested_field_equality(self):
        check = "state.review.status === 'approved'"
        assert evaluate_expression(check, {"review": {"status": "approved"}})
        assert not evaluate_expression(check, {"review": {"status": "rejected"}})
        assert not evaluate_expression(check, {})

    def test_equality_compares_display_strings(self):
        assert evaluate_expression("state.count === 3", {"count": 3.0})
        assert evaluate_expression("state.flag === true", {"flag": True})
        assert not evaluate_expression("state.flag === true", {"flag": "yes"})

    def test_null_and_undefined(self):
        assert evaluate_expression("state.a == null", {})
        assert evaluate_expression("state.a == null", {"a": None})
        assert evaluate_expression("state.a === null", {"a": None})
        assert not evaluate_expression("state.a === null", {})
        assert evaluate_expression("state.a === undefined", {})
        assert evaluate_expression("state.a != null", {"a": 0})

    def test_ordering_requires_numbers(self):
        assert evaluate_expression("state.score >= 0.5", {"score": 0.75})
        assert not evaluate_expression("state.score >= 0.5", {"score": "0.75"})
        assert not evaluate_expression("state.score < 1", {})

    def test_unsupported_evaluates_false(self, caplog):
        assert evaluate_expression("state.tasks.map(t => t.id)", {"tasks": [1]}) is False
        assert "Unsupported gate expression" in caplog.text

    def test_deep_nesting_evaluates_false(self, caplog):
        text = "(" * 2000 + "state.x" + ")" * 2000
        assert evaluate_expression(text, {"x": 1}) is False
        assert "nested deeper" in caplog.text
        assert evaluate_expression("!" * 2000 + "state.x", {"x": 1}) is False

    def test_long_operator_chain_evaluates_false(self):
        text = " || ".join(["state.x"] * 2000)
        assert evaluate_expression(text, {"x": 1}) is False

    def test_nesting_within_bounds(self):
        text = "(" * 20 + "state.x" + ")" * 20
        assert evaluate_expression(text, {"x": 1}) is True
        assert evaluate_expression(" && ".join(["state.x"] * 50), {"x": 1}) is True


class TestHelpers:
    @pytest.mark.parametrize(
        "value,expected",
        [
            (MISSING, False),
            (None, False),
            (False, False),
            (0, False),
            ("", False),
            ([], True),
            ({}, True),
            ("0", True),
            (1, True),
        ],
    )
    def test_is_truthy(self, value, expected):
        assert is_truthy(value) is expected

    def test_compare_strict_inequality(self):
        assert compare_values("a", "!==", "b")
        assert not compare_values("a", "!==", "a")
        assert compare_values(MISSING, "!==", "a")
