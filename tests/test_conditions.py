"""Tests for structured action conditions."""

import pytest
from pydantic import ValidationError

from funcmodel.core.conditions import ActionCondition, evaluate_condition


class TestActionConditionValidation:
    """Tests for ActionCondition construction."""

    @pytest.mark.parametrize("field", ["region", "order.amount", "_private.x1"])
    def test_valid_field_paths(self, field):
        """Dotted identifier paths are accepted."""
        ActionCondition(field=field, operator="==", value=1)

    @pytest.mark.parametrize("field", ["", ".a", "a..b", "a.", "1abc", "a-b", "__import__('os')"])
    def test_invalid_field_paths(self, field):
        """Anything but dotted identifiers is rejected."""
        with pytest.raises(ValidationError):
            ActionCondition(field=field, operator="==", value=1)

    def test_list_operator_requires_list(self):
        """'in' needs a list value."""
        with pytest.raises(ValidationError, match="takes a list of candidates"):
            ActionCondition(field="a", operator="in", value="x")

    def test_scalar_operator_rejects_list(self):
        """'==' does not take a list value."""
        with pytest.raises(ValidationError, match="takes a single literal"):
            ActionCondition(field="a", operator="==", value=["x"])

    def test_unknown_operator_rejected(self):
        """Only the known operators are allowed."""
        with pytest.raises(ValidationError):
            ActionCondition(field="a", operator="=~", value="x")


class TestEvaluateCondition:
    """Tests for evaluate_condition."""

    @pytest.mark.parametrize(
        "operator,value,expected",
        [
            ("==", "emea", True),
            ("!=", "emea", False),
            ("in", ["emea", "apac"], True),
            ("not_in", ["apac"], True),
            ("starts_with", "em", True),
            ("ends_with", "ea", True),
            ("contains", "me", True),
        ],
    )
    def test_string_operators(self, operator, value, expected):
        """String comparisons against a top-level field."""
        condition = ActionCondition(field="region", operator=operator, value=value)
        assert evaluate_condition(condition, {"region": "emea"}) is expected

    @pytest.mark.parametrize(
        "operator,value,expected",
        [(">", 100, True), ("<", 100, False), (">=", 250, True), ("<=", 249.5, False)],
    )
    def test_numeric_operators_on_nested_path(self, operator, value, expected):
        """Numeric comparisons resolve dotted paths."""
        condition = ActionCondition(field="order.amount", operator=operator, value=value)
        assert evaluate_condition(condition, {"order": {"amount": 250}}) is expected

    def test_missing_field_is_false_even_for_not_equal(self):
        """A missing field never satisfies a condition."""
        condition = ActionCondition(field="missing", operator="!=", value="x")
        assert evaluate_condition(condition, {"region": "emea"}) is False

    def test_direct_dotted_key_wins(self):
        """A literal key containing dots is found before nested lookup."""
        condition = ActionCondition(field="a.b", operator="==", value=1)
        assert evaluate_condition(condition, {"a.b": 1, "a": {"b": 2}}) is True

    def test_type_mismatch_is_false(self):
        """Ordering a string against a number is False, not an error."""
        condition = ActionCondition(field="amount", operator=">", value=10)
        assert evaluate_condition(condition, {"amount": "lots"}) is False

    def test_bool_not_ordered_against_numbers(self):
        """True > 0 would hold in Python but is rejected here."""
        condition = ActionCondition(field="flag", operator=">", value=0)
        assert evaluate_condition(condition, {"flag": True}) is False

    def test_contains_on_list(self):
        """contains checks list membership."""
        condition = ActionCondition(field="tags", operator="contains", value="urgent")
        assert evaluate_condition(condition, {"tags": ["urgent", "vip"]}) is True

    def test_non_dict_data_is_false(self):
        """Non-mapping context never matches."""
        condition = ActionCondition(field="a", operator="==", value=1)
        assert evaluate_condition(condition, ["a"]) is False


class TestContextPath:
    """Tests for the path/field naming of conditions."""

    def test_field_key_populates_path(self):
        """Definition files spell the path as 'field'."""
        condition = ActionCondition.model_validate(
            {"field": "order.amount", "operator": ">", "value": 1}
        )
        assert condition.path == "order.amount"

    def test_path_keyword_accepted(self):
        """Code can pass path= directly."""
        condition = ActionCondition(path="region", operator="==", value="emea")
        assert evaluate_condition(condition, {"region": "emea"}) is True

    def test_error_names_the_path(self):
        """Operand errors mention which context path was being checked."""
        with pytest.raises(ValidationError, match="'tier'"):
            ActionCondition(field="tier", operator="not_in", value="gold")
