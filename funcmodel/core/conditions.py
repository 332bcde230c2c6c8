"""Structured conditions for Conditional-mode action nodes.

A condition names a path into the context data the node can read, an
operator, and a literal operand. Nothing is evaluated as code.
"""

import logging
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

logger = logging.getLogger(__name__)

ConditionOperator = Literal[
    "==", "!=", ">", "<", ">=", "<=", "in", "not_in", "contains", "starts_with", "ends_with"
]

# These compare the context value against a list of candidates
MEMBERSHIP_OPERATORS = frozenset({"in", "not_in"})


class ActionCondition(BaseModel):
    """Predicate over node context deciding whether a conditional action runs.

    ``path`` is written as ``field`` in definition files. "approval.state"
    reads ``context["approval"]["state"]``.
    """

    model_config = ConfigDict(populate_by_name=True)

    path: str = Field(alias="field")
    operator: ConditionOperator
    value: str | int | float | bool | list[str | int | float | bool]

    @field_validator("path")
    @classmethod
    def _context_path_segments(cls, path: str) -> str:
        if not all(segment.isidentifier() for segment in path.split(".")):
            raise ValueError(f"Context path '{path}' is not a dotted list of identifiers")
        return path

    @model_validator(mode="after")
    def _operand_matches_operator(self) -> "ActionCondition":
        wants_candidates = self.operator in MEMBERSHIP_OPERATORS
        if wants_candidates != isinstance(self.value, list):
            operand = "a list of candidates" if wants_candidates else "a single literal"
            raise ValueError(
                f"Condition on '{self.path}': operator '{self.operator}' takes {operand}"
            )
        return self


def _lookup(data: dict[str, Any], path: str) -> tuple[bool, Any]:
    """Resolve a context path. Returns (found, value)."""
    if path in data:
        return True, data[path]

    if "." not in path:
        return False, None

    current: Any = data
    for part in path.split("."):
        if not isinstance(current, dict) or part not in current:
            return False, None
        current = current[part]
    return True, current


def evaluate_condition(condition: ActionCondition, data: Any) -> bool:
    """Evaluate a condition against context data.

    Missing paths and type mismatches evaluate to False rather than raising,
    so a typo in a path can never accidentally satisfy "!=" checks.
    """
    if not isinstance(data, dict):
        return False

    found, value = _lookup(data, condition.path)
    if not found:
        logger.debug(f"Context path '{condition.path}' not present in context")
        return False

    expected = condition.value
    op = condition.operator
    try:
        if op == "==":
            return value == expected
        if op == "!=":
            return value != expected
        if op in (">", "<", ">=", "<="):
            # bool is an int subclass; never order booleans against numbers
            if value is None or isinstance(value, bool) != isinstance(expected, bool):
                return False
            if isinstance(expected, (int, float)) and not isinstance(value, (int, float)):
                return False
            if isinstance(expected, str) and not isinstance(value, str):
                return False
            if op == ">":
                return value > expected
            if op == "<":
                return value < expected
            if op == ">=":
                return value >= expected
            return value <= expected
        if op == "in":
            return value in expected
        if op == "not_in":
            return value not in expected
        if op == "contains":
            if isinstance(value, (dict, str, list)):
                return expected in value
            return False
        if op == "starts_with":
            return value.startswith(expected) if isinstance(value, str) else False
        if op == "ends_with":
            return value.endswith(expected) if isinstance(value, str) else False
    except (TypeError, AttributeError):
        return False
    return False
