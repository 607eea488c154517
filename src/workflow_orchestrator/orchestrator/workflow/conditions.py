"""Transition condition evaluation.

Everything here is pure: no I/O and no logging. Callers that want to report a
malformed transition use :func:`transition_problem`.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from typing import Any

from .definitions import Condition, ConditionGroup, Transition

OPERATORS: frozenset[str] = frozenset(
    {
        "==",
        "!=",
        ">",
        "<",
        ">=",
        "<=",
        "exists",
        "not_exists",
        "contains",
        "not_contains",
        "regex",
    }
)

_OUTPUT_PREFIX = "output."
_CONTEXT_PREFIX = "context."


def resolve_path(data: Any, path: str) -> Any:
    """Resolve a dot path such as ``a.b.0.c``.

    Missing segments yield ``None``; this never raises.
    """

    current = data
    for segment in path.split("."):
        if isinstance(current, Mapping):
            current = current.get(segment)
        elif isinstance(current, list) and segment.isdigit():
            index = int(segment)
            current = current[index] if index < len(current) else None
        else:
            return None
        if current is None:
            return None
    return current


def resolve_field(
    field: str, output: Any, context: Mapping[str, Any] | None = None
) -> Any:
    if field.startswith(_CONTEXT_PREFIX):
        return resolve_path(context or {}, field[len(_CONTEXT_PREFIX) :])
    if field.startswith(_OUTPUT_PREFIX):
        return resolve_path(output, field[len(_OUTPUT_PREFIX) :])
    return resolve_path(output, field)


def _is_number(value: Any) -> bool:
    return isinstance(value, int | float)


def _to_number(value: Any) -> float | None:
    if _is_number(value):
        return float(value)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return 0.0
        try:
            return float(text)
        except ValueError:
            return None
    return None


def loose_equals(left: Any, right: Any) -> bool:
    """Equality that lets numeric strings match numbers."""

    if left is None or right is None:
        return left is None and right is None
    if _is_number(left) and _is_number(right):
        return left == right
    if isinstance(left, str) and isinstance(right, str):
        return left == right
    if isinstance(left, str) or isinstance(right, str):
        a, b = _to_number(left), _to_number(right)
        return a is not None and b is not None and a == b
    return left == right


def _compare(left: Any, right: Any, operator: str) -> bool:
    if left is None or right is None:
        return False
    if isinstance(left, str) and isinstance(right, str):
        a: Any = left
        b: Any = right
    else:
        a, b = _to_number(left), _to_number(right)
        if a is None or b is None:
            return False
    if operator == ">":
        return a > b
    if operator == "<":
        return a < b
    if operator == ">=":
        return a >= b
    return a <= b


def _contains(container: Any, item: Any) -> bool | None:
    """Membership test, or None when the container type does not support it."""

    if isinstance(container, str) and isinstance(item, str):
        return item in container
    if isinstance(container, list):
        return item in container
    return None


def evaluate_condition(
    condition: Condition, output: Any, context: Mapping[str, Any] | None = None
) -> bool:
    return _evaluate_single(
        condition.field, condition.operator, condition.value, output, context
    )


def _evaluate_single(
    field: str | None,
    operator: str | None,
    expected: Any,
    output: Any,
    context: Mapping[str, Any] | None,
) -> bool:
    if not field or not operator:
        return False

    actual = resolve_field(field, output, context)

    if operator == "==":
        return loose_equals(actual, expected)
    if operator == "!=":
        return not loose_equals(actual, expected)
    if operator in {">", "<", ">=", "<="}:
        return _compare(actual, expected, operator)
    if operator == "exists":
        return actual is not None
    if operator == "not_exists":
        return actual is None
    if operator == "contains":
        return _contains(actual, expected) is True
    if operator == "not_contains":
        found = _contains(actual, expected)
        return True if found is None else not found
    if operator == "regex":
        if not isinstance(actual, str) or not isinstance(expected, str):
            return False
        try:
            return re.search(expected, actual) is not None
        except re.error:
            return False
    return False


def evaluate_group(
    group: ConditionGroup, output: Any, context: Mapping[str, Any] | None = None
) -> bool:
    if not group.conditions:
        return False
    results = (
        evaluate_group(item, output, context)
        if isinstance(item, ConditionGroup)
        else evaluate_condition(item, output, context)
        for item in group.conditions
    )
    if group.logical_operator == "OR":
        return any(results)
    return all(results)


def evaluate(
    transition: Transition, output: Any, context: Mapping[str, Any] | None = None
) -> bool:
    """Return whether ``transition`` should be taken for ``output``."""

    if transition.condition_type == "always":
        return True
    if transition.condition_type == "on_output_value":
        return _evaluate_single(
            transition.field, transition.operator, transition.value, output, context
        )
    if transition.condition_group is None:
        return False
    return evaluate_group(transition.condition_group, output, context)


def select_transition(
    transitions: Iterable[Transition],
    output: Any,
    context: Mapping[str, Any] | None = None,
) -> Transition | None:
    """First transition whose predicate holds, in declaration order."""

    for transition in transitions:
        if evaluate(transition, output, context):
            return transition
    return None


def _condition_problem(field: str | None, operator: str | None) -> str | None:
    if not field or not operator:
        return "missing field or operator"
    if operator not in OPERATORS:
        return f"unknown operator '{operator}'"
    return None


def _group_problem(group: ConditionGroup) -> str | None:
    if not group.conditions:
        return "empty condition group"
    for item in group.conditions:
        if isinstance(item, ConditionGroup):
            problem = _group_problem(item)
        else:
            problem = _condition_problem(item.field, item.operator)
        if problem is not None:
            return problem
    return None


def transition_problem(transition: Transition) -> str | None:
    """Describe why a transition can never match, or return None."""

    if transition.condition_type == "always":
        return None
    if transition.condition_type == "on_output_value":
        return _condition_problem(transition.field, transition.operator)
    if transition.condition_group is None:
        return "missing condition group"
    return _group_problem(transition.condition_group)
