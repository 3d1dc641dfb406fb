"""Branch resolution: choosing the step that follows the current one.

Explicit branches leaving the current step are tried first, highest priority
first. If none applies, the flow continues with the next visible step in
declaration order.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from litestar_flows.core.types import BranchConditionType
from litestar_flows.engine.conditions import evaluate_condition, is_step_visible
from litestar_flows.engine.expressions import DEFAULT_MAX_LENGTH, evaluate_expression
from litestar_flows.exceptions import ExpressionError
from litestar_flows.log import get_logger

if TYPE_CHECKING:
    from litestar_flows.core.definition import Flow, FlowBranch, FlowStep

__all__ = ["evaluate_branch", "resolve_branch_target", "resolve_next_step"]

logger = get_logger(__name__)


def evaluate_branch(
    branch: FlowBranch,
    data: Mapping[str, Any],
    max_expression_length: int = DEFAULT_MAX_LENGTH,
) -> bool:
    """Return whether ``branch``'s condition holds under ``data``.

    Evaluation never raises. A field condition without a rule, a failing
    expression, a raising predicate and an unknown condition type all count
    as "does not apply"; the last three are logged.

    Args:
        branch: The branch to test.
        data: The instance data bag.
        max_expression_length: Longest accepted expression source.

    Returns:
        True if the branch applies.
    """
    condition = branch.condition

    if condition.type == BranchConditionType.FIELD:
        if condition.rule is None:
            return False
        return evaluate_condition(condition.rule, data)

    if condition.type == BranchConditionType.EXPRESSION:
        if not condition.expression:
            return False
        try:
            return evaluate_expression(condition.expression, data, max_length=max_expression_length)
        except ExpressionError as exc:
            logger.warning("Branch expression failed", branch_id=branch.id, reason=exc.reason)
            return False

    if condition.type == BranchConditionType.CUSTOM:
        if condition.evaluate is None:
            return False
        try:
            return bool(condition.evaluate(dict(data)))
        except Exception:
            logger.exception("Custom branch predicate raised", branch_id=branch.id)
            return False

    logger.warning("Unknown branch condition type", branch_id=branch.id, condition_type=str(condition.type))
    return False


def resolve_branch_target(
    flow: Flow,
    step: FlowStep,
    data: Mapping[str, Any],
    max_expression_length: int = DEFAULT_MAX_LENGTH,
) -> FlowStep | None:
    """Return the target of the first applicable branch leaving ``step``.

    Branches are tried in descending priority; equal priorities keep their
    declaration order. A branch only wins if its target exists and is
    visible, otherwise the next branch is tried.

    Args:
        flow: The flow the step belongs to.
        step: The step being left.
        data: The instance data bag.
        max_expression_length: Longest accepted expression source.

    Returns:
        The target step, or None when no branch applies.
    """
    # sorted() is stable, so ties stay in declaration order
    branches = sorted(flow.branches_from(step.id), key=lambda branch: branch.priority, reverse=True)
    for branch in branches:
        if not evaluate_branch(branch, data, max_expression_length):
            continue
        target = flow.get_step(branch.target_step_id)
        if target is None:
            logger.warning("Branch target not found", branch_id=branch.id, target_step_id=branch.target_step_id)
            continue
        if is_step_visible(target, data):
            return target
    return None


def resolve_next_step(
    flow: Flow,
    current_index: int,
    data: Mapping[str, Any],
    max_expression_length: int = DEFAULT_MAX_LENGTH,
) -> FlowStep | None:
    """Return the step that follows the step at ``current_index``.

    Args:
        flow: The flow being navigated.
        current_index: Declaration index of the current step.
        data: The instance data bag.
        max_expression_length: Longest accepted expression source.

    Returns:
        The branch target if a branch applies, else the first visible step
        after ``current_index``, else None (the flow is finished).

    Example:
        >>> next_step = resolve_next_step(flow, 0, {"plan": "pro"})
    """
    if 0 <= current_index < len(flow.steps):
        target = resolve_branch_target(flow, flow.steps[current_index], data, max_expression_length)
        if target is not None:
            return target

    for step in flow.steps[current_index + 1 :]:
        if is_step_visible(step, data):
            return step
    return None
