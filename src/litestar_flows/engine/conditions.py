"""Condition evaluation for step visibility and field branches.

Rules are evaluated against the instance data bag. Malformed rules never
raise: an unknown operator admits the step (evaluates to ``True``) and a
numeric comparison against a non-numeric value evaluates to ``False``. Both
cases are logged as warnings so misconfigured flows show up in the logs.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from litestar_flows.core.types import ConditionalLogic, ConditionalOperator
from litestar_flows.log import get_logger

if TYPE_CHECKING:
    from litestar_flows.core.definition import ConditionalRule, FlowStep

__all__ = ["evaluate_condition", "is_step_visible", "strict_equals"]

logger = get_logger(__name__)

_NUMERIC_OPERATORS = {
    ConditionalOperator.GREATER_THAN: lambda left, right: left > right,
    ConditionalOperator.LESS_THAN: lambda left, right: left < right,
    ConditionalOperator.GREATER_THAN_OR_EQUAL: lambda left, right: left >= right,
    ConditionalOperator.LESS_THAN_OR_EQUAL: lambda left, right: left <= right,
}


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def strict_equals(left: Any, right: Any) -> bool:
    """Compare two values without cross-type coercion.

    Booleans only equal booleans, numbers (int or float) only equal numbers,
    and any other values must share a type family before ``==`` is consulted.
    So ``True`` does not equal ``1`` and ``"1"`` does not equal ``1``.

    Args:
        left: First value.
        right: Second value.

    Returns:
        True if the values are strictly equal.
    """
    if isinstance(left, bool) or isinstance(right, bool):
        return isinstance(left, bool) and isinstance(right, bool) and left == right
    if _is_number(left) or _is_number(right):
        return _is_number(left) and _is_number(right) and left == right
    if not (isinstance(left, type(right)) or isinstance(right, type(left))):
        return False
    return bool(left == right)


def _contains(container: Any, value: Any) -> bool:
    return any(strict_equals(item, value) for item in container)


def evaluate_condition(rule: ConditionalRule, data: Mapping[str, Any]) -> bool:
    """Evaluate a (possibly nested) rule against instance data.

    When ``rule.rules`` is non-empty, every child is evaluated and the results
    are combined with ``any`` for ``or`` logic and ``all`` otherwise; the
    parent's own field, operator and value are ignored.

    Args:
        rule: The rule to evaluate.
        data: The instance data bag.

    Returns:
        Whether the rule holds.

    Example:
        >>> evaluate_condition(ConditionalRule("plan", ConditionalOperator.EQUALS, "pro"), {"plan": "pro"})
        True
    """
    if rule.rules:
        results = [evaluate_condition(child, data) for child in rule.rules]
        if rule.logic == ConditionalLogic.OR:
            return any(results)
        return all(results)

    field_value = data.get(rule.field)
    operator = rule.operator

    if operator == ConditionalOperator.EQUALS:
        return strict_equals(field_value, rule.value)
    if operator == ConditionalOperator.NOT_EQUALS:
        return not strict_equals(field_value, rule.value)
    if operator == ConditionalOperator.CONTAINS:
        return isinstance(field_value, (list, tuple)) and _contains(field_value, rule.value)
    if operator == ConditionalOperator.NOT_CONTAINS:
        return isinstance(field_value, (list, tuple)) and not _contains(field_value, rule.value)
    if operator in _NUMERIC_OPERATORS:
        if not _is_number(field_value) or not _is_number(rule.value):
            logger.warning(
                "Non-numeric comparison evaluated to false",
                field=rule.field,
                operator=str(operator),
                field_value=field_value,
                comparand=rule.value,
            )
            return False
        return bool(_NUMERIC_OPERATORS[operator](field_value, rule.value))  # type: ignore[index]
    if operator == ConditionalOperator.EXISTS:
        return field_value is not None
    if operator == ConditionalOperator.NOT_EXISTS:
        return field_value is None

    logger.warning("Unknown condition operator, treating rule as satisfied", field=rule.field, operator=str(operator))
    return True


def is_step_visible(step: FlowStep, data: Mapping[str, Any]) -> bool:
    """Return whether ``step`` is visible under ``data``.

    A step without a condition is always visible.
    """
    if step.condition is None:
        return True
    return evaluate_condition(step.condition, data)
