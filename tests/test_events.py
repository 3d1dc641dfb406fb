"""Tests for flow events and the event bus."""

from __future__ import annotations

from datetime import datetime
from typing import Any

import pytest
from structlog.testing import capture_logs

from litestar_flows.core.events import (
    FlowCanceled,
    FlowEventBus,
    FlowPaused,
    FlowStarted,
    StepChanged,
)
from litestar_flows.core.types import FlowEventType


@pytest.fixture
def bus() -> FlowEventBus:
    return FlowEventBus()


@pytest.mark.unit
class TestFlowEvents:
    """Tests for event payloads."""

    def test_event_type_names(self) -> None:
        assert FlowCanceled.event_type == FlowEventType.FLOW_CANCEL
        assert str(StepChanged.event_type) == "flow-step-change"

    def test_payload_fields(self) -> None:
        event = StepChanged("inst-1", from_step_id="a", to_step_id="b")

        assert event.instance_id == "inst-1"
        assert event.from_step_id == "a"
        assert event.to_step_id == "b"
        assert isinstance(event.timestamp, datetime)
        assert event.timestamp.tzinfo is not None


@pytest.mark.unit
class TestFlowEventBus:
    """Tests for subscription and delivery."""

    def test_handlers_receive_events_in_subscription_order(self, bus: FlowEventBus) -> None:
        calls: list[str] = []
        bus.on(FlowEventType.FLOW_PAUSE, lambda event: calls.append("first"))
        bus.on(FlowEventType.FLOW_PAUSE, lambda event: calls.append("second"))

        bus.emit(FlowPaused("inst-1"))

        assert calls == ["first", "second"]

    def test_string_and_enum_names_are_interchangeable(self, bus: FlowEventBus) -> None:
        received: list[Any] = []
        bus.on("flow-pause", received.append)

        bus.emit(FlowPaused("inst-1"))

        assert len(received) == 1
        assert bus.listener_count(FlowEventType.FLOW_PAUSE) == 1

    def test_other_events_are_not_delivered(self, bus: FlowEventBus) -> None:
        received: list[Any] = []
        bus.on(FlowEventType.FLOW_CANCEL, received.append)

        bus.emit(FlowPaused("inst-1"))

        assert received == []

    def test_unsubscribe(self, bus: FlowEventBus) -> None:
        received: list[Any] = []
        unsubscribe = bus.on(FlowEventType.FLOW_PAUSE, received.append)

        unsubscribe()
        unsubscribe()
        bus.emit(FlowPaused("inst-1"))

        assert received == []
        assert not bus.has_listeners(FlowEventType.FLOW_PAUSE)

    def test_duplicate_subscription_is_ignored(self, bus: FlowEventBus) -> None:
        received: list[Any] = []
        bus.on(FlowEventType.FLOW_PAUSE, received.append)
        bus.on(FlowEventType.FLOW_PAUSE, received.append)

        bus.emit(FlowPaused("inst-1"))

        assert len(received) == 1

    def test_off_unknown_handler(self, bus: FlowEventBus) -> None:
        bus.off(FlowEventType.FLOW_PAUSE, print)
        assert bus.listener_count(FlowEventType.FLOW_PAUSE) == 0

    def test_failing_handler_does_not_stop_others(self, bus: FlowEventBus) -> None:
        received: list[Any] = []

        def broken(event: Any) -> None:
            raise RuntimeError("boom")

        bus.on(FlowEventType.FLOW_PAUSE, broken)
        bus.on(FlowEventType.FLOW_PAUSE, received.append)

        with capture_logs() as logs:
            bus.emit(FlowPaused("inst-1"))

        assert len(received) == 1
        assert logs[0]["log_level"] == "error"
        assert logs[0]["event_name"] == "flow-pause"
        assert logs[0]["instance_id"] == "inst-1"

    def test_wildcard_receives_every_event_after_specific_handlers(self, bus: FlowEventBus) -> None:
        calls: list[str] = []
        bus.on("*", lambda event: calls.append(f"*:{event.event_type}"))
        bus.on(FlowEventType.FLOW_START, lambda event: calls.append("start"))

        bus.emit(FlowStarted("inst-1", flow=None))  # type: ignore[arg-type]
        bus.emit(FlowCanceled("inst-1"))

        assert calls == ["start", "*:flow-start", "*:flow-cancel"]

    def test_handler_may_unsubscribe_while_called(self, bus: FlowEventBus) -> None:
        calls: list[str] = []
        unsubscribe: Any = None

        def once(event: Any) -> None:
            calls.append("once")
            unsubscribe()

        unsubscribe = bus.on(FlowEventType.FLOW_PAUSE, once)
        bus.on(FlowEventType.FLOW_PAUSE, lambda event: calls.append("always"))

        bus.emit(FlowPaused("inst-1"))
        bus.emit(FlowPaused("inst-1"))

        assert calls == ["once", "always", "always"]

    def test_remove_all_listeners(self, bus: FlowEventBus) -> None:
        bus.on(FlowEventType.FLOW_PAUSE, print)
        bus.on(FlowEventType.FLOW_CANCEL, print)

        bus.remove_all_listeners(FlowEventType.FLOW_PAUSE)
        assert not bus.has_listeners(FlowEventType.FLOW_PAUSE)
        assert bus.has_listeners(FlowEventType.FLOW_CANCEL)

        bus.remove_all_listeners()
        assert not bus.has_listeners(FlowEventType.FLOW_CANCEL)
