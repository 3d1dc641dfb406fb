"""Exception hierarchy for litestar-flows."""

from __future__ import annotations

__all__ = (
    "ExpressionError",
    "FlowInstanceNotFoundError",
    "FlowNotFoundError",
    "FlowValidationError",
    "FlowsError",
    "NoVisibleStepsError",
    "StepHookError",
    "StepNotFoundError",
    "StepNotVisibleError",
)


class FlowsError(Exception):
    """Base exception for all litestar-flows errors.

    All exceptions raised by litestar-flows inherit from this class, so callers
    can catch every flow-related error with a single except clause.
    """


class FlowNotFoundError(FlowsError):
    """Raised when a flow definition is not registered.

    Attributes:
        flow_id: The id of the flow that was not found.
    """

    def __init__(self, flow_id: str) -> None:
        """Initialize the exception with flow details.

        Args:
            flow_id: The id of the flow that was not found.
        """
        self.flow_id = flow_id
        super().__init__(f"Flow '{flow_id}' not found")


class NoVisibleStepsError(FlowsError):
    """Raised when a flow has no step visible under its starting data.

    A flow with zero reachable steps is a construction error, so starting it
    fails loudly instead of producing an instance with no current step.

    Attributes:
        flow_id: The id of the flow that could not be started.
    """

    def __init__(self, flow_id: str) -> None:
        """Initialize the exception with flow details.

        Args:
            flow_id: The id of the flow that could not be started.
        """
        self.flow_id = flow_id
        super().__init__(f"No visible steps found in flow '{flow_id}'")


class FlowInstanceNotFoundError(FlowsError):
    """Raised when a flow instance is not tracked by the instance store.

    Attributes:
        instance_id: The id of the flow instance that was not found.
    """

    def __init__(self, instance_id: str) -> None:
        """Initialize the exception with instance details.

        Args:
            instance_id: The id of the flow instance that was not found.
        """
        self.instance_id = instance_id
        super().__init__(f"Flow instance '{instance_id}' not found")


class StepNotFoundError(FlowsError):
    """Raised when a step id does not belong to a flow.

    Attributes:
        flow_id: The flow that was searched.
        step_id: The step id that was not found.
    """

    def __init__(self, flow_id: str, step_id: str) -> None:
        self.flow_id = flow_id
        self.step_id = step_id
        super().__init__(f"Step '{step_id}' not found in flow '{flow_id}'")


class StepNotVisibleError(FlowsError):
    """Raised when a step exists but its condition hides it.

    Attributes:
        step_id: The step that is not visible.
    """

    def __init__(self, step_id: str) -> None:
        self.step_id = step_id
        super().__init__(f"Step '{step_id}' is not visible")


class StepHookError(FlowsError):
    """Raised when a step lifecycle hook fails during a transition.

    The engine restores the instance to its pre-transition position before
    raising, so the instance is still usable afterwards.

    Attributes:
        step_id: The step whose hook failed.
        hook: Name of the hook (``on_enter``, ``on_exit`` or ``on_validate``).
        cause: The underlying exception raised by the hook.
    """

    def __init__(self, step_id: str, hook: str, cause: BaseException | None = None) -> None:
        """Initialize the exception with hook details.

        Args:
            step_id: The step whose hook failed.
            hook: Name of the hook that failed.
            cause: The underlying exception raised by the hook, if any.
        """
        self.step_id = step_id
        self.hook = hook
        self.cause = cause
        msg = f"Hook '{hook}' of step '{step_id}' failed"
        if cause:
            msg += f": {cause}"
        super().__init__(msg)


class ExpressionError(FlowsError):
    """Raised when a branch expression cannot be parsed or uses a forbidden construct.

    Attributes:
        expression: The offending expression source.
    """

    def __init__(self, expression: str, reason: str) -> None:
        self.expression = expression
        self.reason = reason
        super().__init__(f"Invalid expression {expression!r}: {reason}")


class FlowValidationError(FlowsError):
    """Raised when a flow definition fails structural validation.

    Attributes:
        errors: List of validation error messages.
    """

    def __init__(self, errors: list[str]) -> None:
        """Initialize the exception with validation errors.

        Args:
            errors: List of validation error messages.
        """
        self.errors = errors
        super().__init__(f"Flow validation failed: {'; '.join(errors)}")
