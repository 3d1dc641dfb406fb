"""Lifecycle events and the event bus for flow instances.

This module defines the event payloads published while a flow instance
runs, and the synchronous publish/subscribe bus that delivers them. Events
can be used for logging, analytics, driving a renderer, or persisting state.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, ClassVar

from litestar_flows.core.types import FlowEventType
from litestar_flows.log import get_logger

if TYPE_CHECKING:
    from litestar_flows.core.definition import Flow, FlowStep
    from litestar_flows.core.validation import ValidationResult

__all__ = [
    "ALL_EVENTS",
    "EventHandler",
    "FlowCanceled",
    "FlowCompleted",
    "FlowDataUpdated",
    "FlowEvent",
    "FlowEventBus",
    "FlowPaused",
    "FlowResumed",
    "FlowStarted",
    "StepChanged",
    "StepEntered",
    "StepExited",
    "StepValidationFailed",
]

logger = get_logger(__name__)

ALL_EVENTS = "*"


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class FlowEvent:
    """Base class for all flow events.

    Attributes:
        instance_id: Id of the flow instance the event belongs to.
        timestamp: When the event occurred.
    """

    event_type: ClassVar[FlowEventType]

    instance_id: str
    timestamp: datetime = field(default_factory=_now, kw_only=True)


@dataclass
class FlowStarted(FlowEvent):
    """Published when an instance starts, before its first step is entered.

    Attributes:
        flow: The flow definition the instance runs.
    """

    event_type: ClassVar[FlowEventType] = FlowEventType.FLOW_START

    flow: Flow


@dataclass
class StepEntered(FlowEvent):
    """Published after a step became current and its ``on_enter`` hook finished."""

    event_type: ClassVar[FlowEventType] = FlowEventType.STEP_ENTER

    step_id: str
    step: FlowStep


@dataclass
class StepExited(FlowEvent):
    """Published after a step's ``on_exit`` hook finished."""

    event_type: ClassVar[FlowEventType] = FlowEventType.STEP_EXIT

    step_id: str
    step: FlowStep


@dataclass
class StepChanged(FlowEvent):
    """Published between exit and enter of every transition.

    Attributes:
        from_step_id: The step that was current.
        to_step_id: The step that is now current.
    """

    event_type: ClassVar[FlowEventType] = FlowEventType.STEP_CHANGE

    from_step_id: str
    to_step_id: str


@dataclass
class FlowDataUpdated(FlowEvent):
    """Published after instance data was merged.

    Attributes:
        data: The merged instance data.
    """

    event_type: ClassVar[FlowEventType] = FlowEventType.DATA_UPDATE

    data: dict[str, Any]


@dataclass
class StepValidationFailed(FlowEvent):
    """Published when a step's validators report errors.

    Attributes:
        step_id: The step that failed validation.
        errors: The failing validation result.
    """

    event_type: ClassVar[FlowEventType] = FlowEventType.VALIDATION_ERROR

    step_id: str
    errors: ValidationResult


@dataclass
class FlowPaused(FlowEvent):
    """Published when an instance is paused."""

    event_type: ClassVar[FlowEventType] = FlowEventType.FLOW_PAUSE


@dataclass
class FlowResumed(FlowEvent):
    """Published when a paused instance is resumed."""

    event_type: ClassVar[FlowEventType] = FlowEventType.FLOW_RESUME


@dataclass
class FlowCompleted(FlowEvent):
    """Published when an instance completes. Terminal for the instance id.

    Attributes:
        data: The final instance data.
    """

    event_type: ClassVar[FlowEventType] = FlowEventType.FLOW_COMPLETE

    data: dict[str, Any]


@dataclass
class FlowCanceled(FlowEvent):
    """Published when an instance is cancelled. Terminal for the instance id."""

    event_type: ClassVar[FlowEventType] = FlowEventType.FLOW_CANCEL


EventHandler = Callable[[FlowEvent], Any]


class FlowEventBus:
    """Synchronous publish/subscribe bus for flow events.

    Handlers run in subscription order on the caller's stack. A handler that
    raises is logged and skipped; the remaining handlers still run and the
    publisher never sees the exception.

    Subscribing to ``"*"`` receives every event, after the event's own handlers.

    Example:
        >>> bus = FlowEventBus()
        >>> unsubscribe = bus.on(FlowEventType.STEP_ENTER, lambda event: print(event.step_id))
        >>> unsubscribe()
    """

    def __init__(self) -> None:
        self._handlers: dict[str, list[EventHandler]] = {}

    def on(self, event: FlowEventType | str, handler: EventHandler) -> Callable[[], None]:
        """Subscribe ``handler`` to ``event``.

        Args:
            event: Event name, or ``"*"`` for every event.
            handler: Called with the event payload.

        Returns:
            A callable that removes the subscription.
        """
        handlers = self._handlers.setdefault(str(event), [])
        if handler not in handlers:
            handlers.append(handler)

        def unsubscribe() -> None:
            self.off(event, handler)

        return unsubscribe

    def off(self, event: FlowEventType | str, handler: EventHandler) -> None:
        """Remove ``handler`` from ``event``; unknown handlers are ignored."""
        handlers = self._handlers.get(str(event))
        if handlers and handler in handlers:
            handlers.remove(handler)

    def remove_all_listeners(self, event: FlowEventType | str | None = None) -> None:
        """Remove every handler of ``event``, or of all events when ``event`` is None."""
        if event is None:
            self._handlers.clear()
        else:
            self._handlers.pop(str(event), None)

    def listener_count(self, event: FlowEventType | str) -> int:
        return len(self._handlers.get(str(event), []))

    def has_listeners(self, event: FlowEventType | str) -> bool:
        return self.listener_count(event) > 0

    def emit(self, event: FlowEvent) -> None:
        """Deliver ``event`` to its subscribers.

        Args:
            event: The payload; its class decides the event name.
        """
        name = str(event.event_type)
        # Copy so handlers may unsubscribe while being called.
        handlers = [*self._handlers.get(name, []), *self._handlers.get(ALL_EVENTS, [])]
        for handler in handlers:
            try:
                handler(event)
            except Exception:
                logger.exception("Error in flow event handler", event_name=name, instance_id=event.instance_id)
