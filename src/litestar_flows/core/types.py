"""Core type definitions for litestar-flows.

This module defines the enums and type aliases shared by flow definitions,
instance state and the navigation engine. Enum values are the wire strings
used by flow configurations, so definitions loaded from JSON compare equal
to the enum members.
"""

from __future__ import annotations

import sys
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any, TypeAlias

# StrEnum backport for Python < 3.11
if sys.version_info >= (3, 11):
    from enum import StrEnum
else:

    class StrEnum(str, Enum):
        """String enumeration compatibility for Python < 3.11."""

        def __str__(self) -> str:
            return str(self.value)


__all__ = [
    "BranchConditionType",
    "ConditionalLogic",
    "ConditionalOperator",
    "FlowData",
    "FlowEventType",
    "FlowMode",
    "FlowTargetType",
    "StepHook",
    "StepKind",
    "StrEnum",
]


class FlowMode(StrEnum):
    """Level of user control over a flow.

    Attributes:
        GUIDED: The engine decides every transition.
        FREE_EXPLORE: The user may roam freely between steps.
        HYBRID: Guided, with exploration allowed at configured points.
    """

    GUIDED = "guided"
    FREE_EXPLORE = "free-explore"
    HYBRID = "hybrid"


class StepKind(StrEnum):
    """How a step is rendered and handled by the presentation layer.

    Attributes:
        FORM: Collects field input through a renderer component.
        NAVIGATION: Moves the viewer to a target scene, deck, node or context.
        SELECTION: Presents choices, typically as cards.
        REVIEW: Summarises accumulated data before completion.
        CONTENT: Static content with no input.
    """

    FORM = "form"
    NAVIGATION = "navigation"
    SELECTION = "selection"
    REVIEW = "review"
    CONTENT = "content"


class FlowTargetType(StrEnum):
    """Kind of object a navigation step points at."""

    SCENE = "scene"
    DECK = "deck"
    NODE = "node"
    CONTEXT = "context"


class ConditionalOperator(StrEnum):
    """Comparison operators available to conditional rules."""

    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    GREATER_THAN_OR_EQUAL = "greater_than_or_equal"
    LESS_THAN_OR_EQUAL = "less_than_or_equal"
    EXISTS = "exists"
    NOT_EXISTS = "not_exists"


class ConditionalLogic(StrEnum):
    """How nested rules are combined."""

    AND = "and"
    OR = "or"


class BranchConditionType(StrEnum):
    """Discriminator of a branch condition.

    Attributes:
        FIELD: A ``ConditionalRule`` evaluated against instance data.
        EXPRESSION: A restricted boolean expression over ``data``.
        CUSTOM: A caller-supplied predicate.
    """

    FIELD = "field"
    EXPRESSION = "expression"
    CUSTOM = "custom"


class FlowEventType(StrEnum):
    """Names of the lifecycle events published by the flow event bus."""

    FLOW_START = "flow-start"
    STEP_ENTER = "flow-step-enter"
    STEP_EXIT = "flow-step-exit"
    STEP_CHANGE = "flow-step-change"
    DATA_UPDATE = "flow-data-update"
    VALIDATION_ERROR = "flow-validation-error"
    FLOW_PAUSE = "flow-pause"
    FLOW_RESUME = "flow-resume"
    FLOW_COMPLETE = "flow-complete"
    FLOW_CANCEL = "flow-cancel"


FlowData: TypeAlias = dict[str, Any]
"""Type alias for the key/value bag accumulated by a flow instance."""

StepHook: TypeAlias = Callable[[FlowData], Awaitable[None] | None]
"""A step ``on_enter``/``on_exit`` hook; may be a plain function or a coroutine function."""
