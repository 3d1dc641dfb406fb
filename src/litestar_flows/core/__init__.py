"""Core domain module for litestar-flows.

This module exports the building blocks of flow definitions: types, the
definition dataclasses, instance state, events and validation.
"""

from __future__ import annotations

from litestar_flows.core.definition import (
    BranchCondition,
    ConditionalRule,
    ExplorationConfig,
    Flow,
    FlowBranch,
    FlowCoordinates,
    FlowSettings,
    FlowStep,
    FlowTemplate,
    StepGuidance,
    TransitionConfig,
)
from litestar_flows.core.events import (
    FlowCanceled,
    FlowCompleted,
    FlowDataUpdated,
    FlowEvent,
    FlowEventBus,
    FlowPaused,
    FlowResumed,
    FlowStarted,
    StepChanged,
    StepEntered,
    StepExited,
    StepValidationFailed,
)
from litestar_flows.core.state import FlowContext, FlowInstance, FlowState
from litestar_flows.core.types import (
    BranchConditionType,
    ConditionalLogic,
    ConditionalOperator,
    FlowData,
    FlowEventType,
    FlowMode,
    FlowTargetType,
    StepKind,
)
from litestar_flows.core.validation import ValidationIssue, ValidationResult, ValidationService

__all__ = [
    "BranchCondition",
    "BranchConditionType",
    "ConditionalLogic",
    "ConditionalOperator",
    "ConditionalRule",
    "ExplorationConfig",
    "Flow",
    "FlowBranch",
    "FlowCanceled",
    "FlowCompleted",
    "FlowContext",
    "FlowCoordinates",
    "FlowData",
    "FlowDataUpdated",
    "FlowEvent",
    "FlowEventBus",
    "FlowEventType",
    "FlowInstance",
    "FlowMode",
    "FlowPaused",
    "FlowResumed",
    "FlowSettings",
    "FlowStarted",
    "FlowState",
    "FlowStep",
    "FlowTargetType",
    "FlowTemplate",
    "StepChanged",
    "StepEntered",
    "StepExited",
    "StepGuidance",
    "StepKind",
    "StepValidationFailed",
    "TransitionConfig",
    "ValidationIssue",
    "ValidationResult",
    "ValidationService",
]
