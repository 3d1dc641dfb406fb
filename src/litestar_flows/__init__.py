"""Litestar Flows - guided multi-step flow orchestration for Litestar.

This package lets applications define reusable multi-step flows (wizards,
onboarding tours, guided navigation), start instances of them and move each
instance from step to step under conditional visibility rules and
priority-ordered branches.

Key Features:
    - Declarative flows built from dataclasses or plain data
    - Conditional step visibility with nested and/or rules
    - Field, expression and custom branches with priorities
    - Sync or async step hooks, validators and flow callbacks
    - Lifecycle events with wildcard subscriptions
    - Pluggable state persistence
    - Litestar plugin with dependency injection

Example:
    >>> from litestar_flows import Flow, FlowStep, FlowSystem
    >>>
    >>> system = FlowSystem()
    >>> system.register_flow(
    ...     Flow(id="onboarding", steps=[FlowStep(id="welcome"), FlowStep(id="profile")])
    ... )
    >>> instance_id = await system.start_flow("onboarding")
    >>> await system.next_step(instance_id)
    True
"""

from __future__ import annotations

from litestar_flows.__metadata__ import __project__, __version__
from litestar_flows.config import FlowEngineConfig
from litestar_flows.core import (
    BranchCondition,
    BranchConditionType,
    ConditionalLogic,
    ConditionalOperator,
    ConditionalRule,
    ExplorationConfig,
    Flow,
    FlowBranch,
    FlowCanceled,
    FlowCompleted,
    FlowContext,
    FlowCoordinates,
    FlowData,
    FlowDataUpdated,
    FlowEvent,
    FlowEventBus,
    FlowEventType,
    FlowInstance,
    FlowMode,
    FlowPaused,
    FlowResumed,
    FlowSettings,
    FlowStarted,
    FlowState,
    FlowStep,
    FlowTargetType,
    FlowTemplate,
    StepChanged,
    StepEntered,
    StepExited,
    StepGuidance,
    StepKind,
    StepValidationFailed,
    TransitionConfig,
    ValidationIssue,
    ValidationResult,
    ValidationService,
)
from litestar_flows.engine import (
    FlowInstanceStore,
    FlowRegistry,
    FlowStatePersistence,
    FlowSystem,
    InMemoryFlowStatePersistence,
    evaluate_branch,
    evaluate_condition,
    is_step_visible,
    resolve_next_step,
)
from litestar_flows.exceptions import (
    ExpressionError,
    FlowInstanceNotFoundError,
    FlowNotFoundError,
    FlowsError,
    FlowValidationError,
    NoVisibleStepsError,
    StepHookError,
    StepNotFoundError,
    StepNotVisibleError,
)
from litestar_flows.log import configure_logging
from litestar_flows.plugin import FlowPlugin, FlowPluginConfig

__all__ = (
    "BranchCondition",
    "BranchConditionType",
    "ConditionalLogic",
    "ConditionalOperator",
    "ConditionalRule",
    "ExplorationConfig",
    "ExpressionError",
    "Flow",
    "FlowBranch",
    "FlowCanceled",
    "FlowCompleted",
    "FlowContext",
    "FlowCoordinates",
    "FlowData",
    "FlowDataUpdated",
    "FlowEngineConfig",
    "FlowEvent",
    "FlowEventBus",
    "FlowEventType",
    "FlowInstance",
    "FlowInstanceNotFoundError",
    "FlowInstanceStore",
    "FlowMode",
    "FlowNotFoundError",
    "FlowPaused",
    "FlowPlugin",
    "FlowPluginConfig",
    "FlowRegistry",
    "FlowResumed",
    "FlowSettings",
    "FlowStarted",
    "FlowState",
    "FlowStatePersistence",
    "FlowStep",
    "FlowSystem",
    "FlowTargetType",
    "FlowTemplate",
    "FlowValidationError",
    "FlowsError",
    "InMemoryFlowStatePersistence",
    "NoVisibleStepsError",
    "StepChanged",
    "StepEntered",
    "StepExited",
    "StepGuidance",
    "StepHookError",
    "StepKind",
    "StepNotFoundError",
    "StepNotVisibleError",
    "StepValidationFailed",
    "TransitionConfig",
    "ValidationIssue",
    "ValidationResult",
    "ValidationService",
    "__project__",
    "__version__",
    "configure_logging",
    "evaluate_branch",
    "evaluate_condition",
    "is_step_visible",
    "resolve_next_step",
)
