"""Tests for FlowSystem: instance lifecycle and step navigation."""

from __future__ import annotations

import asyncio
import re
from typing import TYPE_CHECKING, Any

import pytest
from structlog.testing import capture_logs

from litestar_flows.core.definition import ConditionalRule, Flow, FlowSettings, FlowStep
from litestar_flows.core.types import ConditionalOperator
from litestar_flows.core.validation import ValidationResult

if TYPE_CHECKING:
    from litestar_flows.engine.system import FlowSystem


def _recording_hook(calls: list[str], label: str) -> Any:
    async def hook(data: dict[str, Any]) -> None:
        calls.append(label)

    return hook


@pytest.mark.unit
@pytest.mark.asyncio
class TestStartFlow:
    """Tests for starting instances."""

    async def test_unknown_flow(self, flow_system: FlowSystem) -> None:
        from litestar_flows.exceptions import FlowNotFoundError

        with pytest.raises(FlowNotFoundError):
            await flow_system.start_flow("missing")

    async def test_no_visible_steps(self, flow_system: FlowSystem) -> None:
        from litestar_flows.exceptions import NoVisibleStepsError

        hidden = ConditionalRule("never", ConditionalOperator.EXISTS)
        flow_system.register_flow(Flow(id="hidden", steps=[FlowStep(id="a", condition=hidden)]))

        with pytest.raises(NoVisibleStepsError):
            await flow_system.start_flow("hidden")

        assert flow_system.get_active_instances() == []

    async def test_instance_id_format(self, flow_system: FlowSystem, linear_flow: Flow) -> None:
        flow_system.register_flow(linear_flow)

        first = await flow_system.start_flow("linear")
        second = await flow_system.start_flow("linear")

        assert re.fullmatch(r"linear-instance-1-\d+", first)
        assert re.fullmatch(r"linear-instance-2-\d+", second)

    async def test_initial_state(self, flow_system: FlowSystem, linear_flow: Flow) -> None:
        linear_flow.initial_data = {"plan": "free", "seats": 1}
        flow_system.register_flow(linear_flow)

        instance_id = await flow_system.start_flow("linear", {"plan": "pro"})
        state = flow_system.get_state(instance_id)

        assert state is not None
        assert state.current_step_id == "step1"
        assert state.current_step_index == 0
        assert state.visited_steps == []
        assert state.data == {"plan": "pro", "seats": 1}
        assert not state.is_complete
        assert not state.is_paused

    async def test_starts_on_first_visible_step(self, flow_system: FlowSystem) -> None:
        gated = ConditionalRule("returning", ConditionalOperator.EQUALS, True)
        flow_system.register_flow(Flow(id="f", steps=[FlowStep(id="welcome-back", condition=gated), FlowStep(id="intro")]))

        instance_id = await flow_system.start_flow("f")

        step = flow_system.get_current_step(instance_id)
        assert step is not None
        assert step.id == "intro"
        assert flow_system.get_state(instance_id).current_step_index == 1  # type: ignore[union-attr]

    async def test_start_events_and_hook_order(self, flow_system: FlowSystem, recorder: Any) -> None:
        calls: list[str] = []
        flow_system.on("flow-step-enter", lambda event: calls.append("event"))
        flow_system.register_flow(Flow(id="f", steps=[FlowStep(id="a", on_enter=_recording_hook(calls, "hook"))]))

        await flow_system.start_flow("f")

        assert recorder.names == ["flow-start", "flow-step-enter"]
        assert calls == ["hook", "event"]

    async def test_running_instance_keeps_its_flow(self, flow_system: FlowSystem, linear_flow: Flow) -> None:
        flow_system.register_flow(linear_flow)
        instance_id = await flow_system.start_flow("linear")

        flow_system.register_flow(Flow(id="linear", steps=[FlowStep(id="other")]))

        instance = flow_system.get_instance(instance_id)
        assert instance is not None
        assert instance.flow is linear_flow
        assert await flow_system.next_step(instance_id)
        assert flow_system.get_current_step(instance_id).id == "step2"  # type: ignore[union-attr]


@pytest.mark.unit
@pytest.mark.asyncio
class TestNextStep:
    """Tests for advancing."""

    async def test_sequential_flow_completes(self, flow_system: FlowSystem, linear_flow: Flow, recorder: Any) -> None:
        completed: list[dict[str, Any]] = []

        async def on_complete(data: dict[str, Any]) -> None:
            completed.append(dict(data))

        linear_flow.on_complete = on_complete
        flow_system.register_flow(linear_flow)
        instance_id = await flow_system.start_flow("linear", {"name": "Ada"})

        assert await flow_system.next_step(instance_id) is True
        assert flow_system.get_current_step(instance_id).id == "step2"  # type: ignore[union-attr]
        assert await flow_system.next_step(instance_id) is True
        assert flow_system.get_current_step(instance_id).id == "step3"  # type: ignore[union-attr]

        recorder.clear()
        assert await flow_system.next_step(instance_id) is False

        assert completed == [{"name": "Ada"}]
        assert recorder.names == ["flow-step-exit", "flow-complete"]
        assert flow_system.get_instance(instance_id) is None

    async def test_transition_events(self, flow_system: FlowSystem, linear_flow: Flow, recorder: Any) -> None:
        flow_system.register_flow(linear_flow)
        instance_id = await flow_system.start_flow("linear")
        recorder.clear()

        await flow_system.next_step(instance_id)

        assert recorder.names == ["flow-step-exit", "flow-step-change", "flow-step-enter"]
        exited, changed, entered = recorder.events
        assert exited.step_id == "step1"
        assert (changed.from_step_id, changed.to_step_id) == ("step1", "step2")
        assert entered.step_id == "step2"
        assert entered.step is linear_flow.steps[1]

    async def test_hooks_and_callback_order(self, flow_system: FlowSystem) -> None:
        calls: list[str] = []
        flow = Flow(
            id="f",
            steps=[
                FlowStep(id="a", on_exit=_recording_hook(calls, "exit:a")),
                FlowStep(id="b", on_enter=_recording_hook(calls, "enter:b")),
            ],
            on_step_change=lambda new, old: calls.append(f"change:{old}->{new}"),
        )
        flow_system.register_flow(flow)
        flow_system.on("*", lambda event: calls.append(str(event.event_type)))
        instance_id = await flow_system.start_flow("f")
        calls.clear()

        await flow_system.next_step(instance_id)

        assert calls == [
            "exit:a",
            "flow-step-exit",
            "enter:b",
            "flow-step-change",
            "flow-step-enter",
            "change:a->b",
        ]

    async def test_sync_hooks(self, flow_system: FlowSystem) -> None:
        calls: list[str] = []
        flow = Flow(id="f", steps=[FlowStep(id="a", on_exit=lambda data: calls.append("exit")), FlowStep(id="b")])
        flow_system.register_flow(flow)
        instance_id = await flow_system.start_flow("f")

        assert await flow_system.next_step(instance_id)
        assert calls == ["exit"]

    async def test_conditional_step_is_skipped(self, flow_system: FlowSystem, conditional_flow: Flow) -> None:
        flow_system.register_flow(conditional_flow)
        instance_id = await flow_system.start_flow("conditional", {"wants_extra": False})

        await flow_system.next_step(instance_id)

        assert flow_system.get_current_step(instance_id).id == "step3"  # type: ignore[union-attr]

    async def test_conditional_step_is_shown(self, flow_system: FlowSystem, conditional_flow: Flow) -> None:
        flow_system.register_flow(conditional_flow)
        instance_id = await flow_system.start_flow("conditional", {"wants_extra": True})

        await flow_system.next_step(instance_id)

        assert flow_system.get_current_step(instance_id).id == "step2"  # type: ignore[union-attr]

    async def test_branch_overrides_order(self, flow_system: FlowSystem, branching_flow: Flow) -> None:
        flow_system.register_flow(branching_flow)
        instance_id = await flow_system.start_flow("branching", {"skip": True})

        await flow_system.next_step(instance_id)

        state = flow_system.get_state(instance_id)
        assert state is not None
        assert state.current_step_id == "step3"
        assert state.current_step_index == 2
        assert state.visited_steps == ["step1"]

    async def test_branch_uses_current_data(self, flow_system: FlowSystem, branching_flow: Flow) -> None:
        flow_system.register_flow(branching_flow)
        instance_id = await flow_system.start_flow("branching")

        flow_system.update_instance_data(instance_id, {"skip": True})
        await flow_system.next_step(instance_id)

        assert flow_system.get_current_step(instance_id).id == "step3"  # type: ignore[union-attr]

    async def test_unknown_instance(self, flow_system: FlowSystem) -> None:
        with capture_logs() as logs:
            assert await flow_system.next_step("ghost") is False

        assert logs[0]["log_level"] == "warning"
        assert logs[0]["instance_id"] == "ghost"
        assert logs[0]["operation"] == "next_step"


@pytest.mark.unit
@pytest.mark.asyncio
class TestPreviousStep:
    """Tests for going back."""

    async def test_history_symmetry(self, flow_system: FlowSystem, linear_flow: Flow) -> None:
        flow_system.register_flow(linear_flow)
        instance_id = await flow_system.start_flow("linear")
        state = flow_system.get_state(instance_id)
        assert state is not None

        await flow_system.next_step(instance_id)
        await flow_system.next_step(instance_id)
        assert state.visited_steps == ["step1", "step2"]

        assert await flow_system.previous_step(instance_id) is True
        assert (state.current_step_id, state.visited_steps) == ("step2", ["step1"])
        assert await flow_system.previous_step(instance_id) is True
        assert (state.current_step_id, state.current_step_index, state.visited_steps) == ("step1", 0, [])

    async def test_no_history(self, flow_system: FlowSystem, linear_flow: Flow, recorder: Any) -> None:
        flow_system.register_flow(linear_flow)
        instance_id = await flow_system.start_flow("linear")
        recorder.clear()

        assert await flow_system.previous_step(instance_id) is False
        assert recorder.events == []

    async def test_back_disabled(self, flow_system: FlowSystem, linear_flow: Flow) -> None:
        linear_flow.settings = FlowSettings(allow_back=False)
        flow_system.register_flow(linear_flow)
        instance_id = await flow_system.start_flow("linear")
        await flow_system.next_step(instance_id)

        assert await flow_system.previous_step(instance_id) is False
        assert flow_system.get_current_step(instance_id).id == "step2"  # type: ignore[union-attr]

    async def test_back_events_and_callback(self, flow_system: FlowSystem, linear_flow: Flow, recorder: Any) -> None:
        changes: list[tuple[str, str | None]] = []
        linear_flow.on_step_change = lambda new, old: changes.append((new, old))
        flow_system.register_flow(linear_flow)
        instance_id = await flow_system.start_flow("linear")
        await flow_system.next_step(instance_id)
        recorder.clear()

        await flow_system.previous_step(instance_id)

        assert recorder.names == ["flow-step-exit", "flow-step-change", "flow-step-enter"]
        assert changes == [("step2", "step1"), ("step1", "step2")]

    async def test_popped_step_is_not_rechecked(self, flow_system: FlowSystem, conditional_flow: Flow) -> None:
        flow_system.register_flow(conditional_flow)
        instance_id = await flow_system.start_flow("conditional", {"wants_extra": True})
        await flow_system.next_step(instance_id)
        await flow_system.next_step(instance_id)

        flow_system.update_instance_data(instance_id, {"wants_extra": False})

        assert await flow_system.previous_step(instance_id) is True
        assert flow_system.get_current_step(instance_id).id == "step2"  # type: ignore[union-attr]


@pytest.mark.unit
@pytest.mark.asyncio
class TestGoToStep:
    """Tests for jumping."""

    async def test_jump(self, flow_system: FlowSystem, linear_flow: Flow, recorder: Any) -> None:
        flow_system.register_flow(linear_flow)
        instance_id = await flow_system.start_flow("linear")
        recorder.clear()

        assert await flow_system.go_to_step(instance_id, "step3") is True

        state = flow_system.get_state(instance_id)
        assert state is not None
        assert (state.current_step_id, state.current_step_index, state.visited_steps) == ("step3", 2, ["step1"])
        assert recorder.names == ["flow-step-exit", "flow-step-change", "flow-step-enter"]

        assert await flow_system.previous_step(instance_id) is True
        assert state.current_step_id == "step1"

    async def test_unknown_step(self, flow_system: FlowSystem, linear_flow: Flow, recorder: Any) -> None:
        flow_system.register_flow(linear_flow)
        instance_id = await flow_system.start_flow("linear")
        recorder.clear()

        with capture_logs() as logs:
            assert await flow_system.go_to_step(instance_id, "stepX") is False

        state = flow_system.get_state(instance_id)
        assert state is not None
        assert state.current_step_id == "step1"
        assert state.visited_steps == []
        assert recorder.events == []
        assert logs[0]["step_id"] == "stepX"

    async def test_invisible_step(self, flow_system: FlowSystem, conditional_flow: Flow) -> None:
        flow_system.register_flow(conditional_flow)
        instance_id = await flow_system.start_flow("conditional")

        assert await flow_system.go_to_step(instance_id, "step2") is False
        assert flow_system.get_current_step(instance_id).id == "step1"  # type: ignore[union-attr]

    async def test_current_step(self, flow_system: FlowSystem, linear_flow: Flow) -> None:
        flow_system.register_flow(linear_flow)
        instance_id = await flow_system.start_flow("linear")

        assert await flow_system.go_to_step(instance_id, "step1") is False
        assert flow_system.get_state(instance_id).visited_steps == []  # type: ignore[union-attr]


@pytest.mark.unit
@pytest.mark.asyncio
class TestSkipStep:
    """Tests for skipping."""

    async def test_skip_disabled_by_default(self, flow_system: FlowSystem, linear_flow: Flow) -> None:
        flow_system.register_flow(linear_flow)
        instance_id = await flow_system.start_flow("linear")

        assert await flow_system.skip_step(instance_id) is False
        assert flow_system.get_current_step(instance_id).id == "step1"  # type: ignore[union-attr]

    async def test_skip_bypasses_validation(self, flow_system: FlowSystem, recorder: Any) -> None:
        flow = Flow(
            id="f",
            steps=[FlowStep(id="a", validator=lambda value, data: ValidationResult.fail("Required")), FlowStep(id="b")],
            settings=FlowSettings(allow_skip=True),
        )
        flow_system.register_flow(flow)
        instance_id = await flow_system.start_flow("f")

        assert await flow_system.skip_step(instance_id) is True
        assert flow_system.get_current_step(instance_id).id == "b"  # type: ignore[union-attr]
        assert "flow-validation-error" not in recorder.names


@pytest.mark.unit
@pytest.mark.asyncio
class TestValidation:
    """Tests for step validation."""

    @pytest.fixture
    def form_flow(self) -> Flow:
        def require_name(value: Any, data: dict[str, Any]) -> ValidationResult:
            if not value:
                return ValidationResult.fail("Name is required", field="name")
            return ValidationResult.ok()

        return Flow(id="form", steps=[FlowStep(id="name", validator=require_name), FlowStep(id="done")])

    async def test_failing_validation_blocks_next(self, flow_system: FlowSystem, form_flow: Flow, recorder: Any) -> None:
        flow_system.register_flow(form_flow)
        instance_id = await flow_system.start_flow("form")
        recorder.clear()

        assert await flow_system.next_step(instance_id) is False

        state = flow_system.get_state(instance_id)
        assert state is not None
        assert state.current_step_id == "name"
        assert not state.is_validating
        assert state.errors["name"].errors[0].message == "Name is required"
        assert recorder.names == ["flow-validation-error"]
        assert recorder.events[0].step_id == "name"

    async def test_fixed_data_clears_errors(self, flow_system: FlowSystem, form_flow: Flow) -> None:
        flow_system.register_flow(form_flow)
        instance_id = await flow_system.start_flow("form")
        await flow_system.next_step(instance_id)

        flow_system.update_instance_data(instance_id, {"name": "Ada"})

        assert await flow_system.next_step(instance_id) is True
        assert flow_system.get_state(instance_id).errors == {}  # type: ignore[union-attr]

    async def test_validation_can_be_disabled(self, form_flow: Flow) -> None:
        from litestar_flows.config import FlowEngineConfig
        from litestar_flows.engine.system import FlowSystem

        system = FlowSystem(config=FlowEngineConfig(validate_on_next=False))
        system.register_flow(form_flow)
        instance_id = await system.start_flow("form")

        assert await system.next_step(instance_id) is True

    async def test_on_validate_and_validator_are_combined(self, flow_system: FlowSystem) -> None:
        async def on_validate(data: dict[str, Any]) -> ValidationResult:
            return ValidationResult.fail("Accept the terms", field="terms")

        async def validator(value: Any, data: dict[str, Any]) -> ValidationResult:
            return ValidationResult.fail("Pick a plan", field="plan")

        flow_system.register_flow(Flow(id="f", steps=[FlowStep(id="a", on_validate=on_validate, validator=validator)]))
        instance_id = await flow_system.start_flow("f")

        result = await flow_system.validate_step(instance_id)

        assert result is not None
        assert [issue.field for issue in result.errors] == ["terms", "plan"]

    async def test_validate_named_step(self, flow_system: FlowSystem, form_flow: Flow) -> None:
        flow_system.register_flow(form_flow)
        instance_id = await flow_system.start_flow("form", {"name": "Ada"})

        result = await flow_system.validate_step(instance_id, "name")

        assert result is not None
        assert result.is_valid
        assert await flow_system.validate_step(instance_id, "nope") is None
        assert await flow_system.validate_step("ghost") is None

    async def test_step_without_validators_is_valid(self, flow_system: FlowSystem, linear_flow: Flow) -> None:
        flow_system.register_flow(linear_flow)
        instance_id = await flow_system.start_flow("linear")

        result = await flow_system.validate_step(instance_id)

        assert result is not None
        assert result.is_valid


@pytest.mark.unit
@pytest.mark.asyncio
class TestInstanceData:
    """Tests for data updates."""

    async def test_shallow_merge(self, flow_system: FlowSystem, linear_flow: Flow, recorder: Any) -> None:
        flow_system.register_flow(linear_flow)
        instance_id = await flow_system.start_flow("linear", {"profile": {"name": "Ada", "age": 36}, "plan": "free"})
        recorder.clear()

        flow_system.update_instance_data(instance_id, {"profile": {"name": "Grace"}})

        state = flow_system.get_state(instance_id)
        assert state is not None
        assert state.data == {"profile": {"name": "Grace"}, "plan": "free"}
        assert recorder.names == ["flow-data-update"]
        assert recorder.events[0].data == state.data

    async def test_unknown_instance(self, flow_system: FlowSystem) -> None:
        with capture_logs() as logs:
            flow_system.update_instance_data("ghost", {"a": 1})

        assert logs[0]["operation"] == "update_instance_data"


@pytest.mark.unit
@pytest.mark.asyncio
class TestPauseResume:
    """Tests for pausing."""

    async def test_paused_instance_refuses_navigation(self, flow_system: FlowSystem, linear_flow: Flow, recorder: Any) -> None:
        flow_system.register_flow(linear_flow)
        instance_id = await flow_system.start_flow("linear")
        recorder.clear()

        flow_system.pause_flow(instance_id)

        assert flow_system.get_state(instance_id).is_paused  # type: ignore[union-attr]
        assert await flow_system.next_step(instance_id) is False
        assert await flow_system.go_to_step(instance_id, "step3") is False
        assert flow_system.get_current_step(instance_id).id == "step1"  # type: ignore[union-attr]

        flow_system.resume_flow(instance_id)

        assert await flow_system.next_step(instance_id) is True
        assert recorder.names[:2] == ["flow-pause", "flow-resume"]

    async def test_data_updates_allowed_while_paused(self, flow_system: FlowSystem, linear_flow: Flow) -> None:
        flow_system.register_flow(linear_flow)
        instance_id = await flow_system.start_flow("linear")
        flow_system.pause_flow(instance_id)

        flow_system.update_instance_data(instance_id, {"a": 1})

        assert flow_system.get_state(instance_id).data == {"a": 1}  # type: ignore[union-attr]

    async def test_pause_can_be_advisory(self, linear_flow: Flow) -> None:
        from litestar_flows.config import FlowEngineConfig
        from litestar_flows.engine.system import FlowSystem

        system = FlowSystem(config=FlowEngineConfig(block_navigation_when_paused=False))
        system.register_flow(linear_flow)
        instance_id = await system.start_flow("linear")
        system.pause_flow(instance_id)

        assert await system.next_step(instance_id) is True


@pytest.mark.unit
@pytest.mark.asyncio
class TestCompleteAndCancel:
    """Tests for terminal operations."""

    async def test_cancel(self, flow_system: FlowSystem, linear_flow: Flow, recorder: Any) -> None:
        cancelled: list[bool] = []
        linear_flow.on_cancel = lambda: cancelled.append(True)
        flow_system.register_flow(linear_flow)
        instance_id = await flow_system.start_flow("linear")
        recorder.clear()

        flow_system.cancel_flow(instance_id)

        assert cancelled == [True]
        assert recorder.names == ["flow-cancel"]
        assert flow_system.get_instance(instance_id) is None

    async def test_navigation_after_cancel(self, flow_system: FlowSystem, linear_flow: Flow, recorder: Any) -> None:
        flow_system.register_flow(linear_flow)
        instance_id = await flow_system.start_flow("linear")
        flow_system.cancel_flow(instance_id)
        recorder.clear()

        with capture_logs() as logs:
            assert await flow_system.next_step(instance_id) is False
            flow_system.cancel_flow(instance_id)

        assert recorder.events == []
        assert [entry["event"] for entry in logs] == ["Flow instance not found", "Flow instance not found"]

    async def test_complete_flow_directly(self, flow_system: FlowSystem, linear_flow: Flow, recorder: Any) -> None:
        flow_system.register_flow(linear_flow)
        instance_id = await flow_system.start_flow("linear")
        instance = flow_system.get_instance(instance_id)
        assert instance is not None

        await flow_system.complete_flow(instance_id)

        assert instance.state.is_complete
        assert instance.state.completed_at is not None
        assert recorder.names[-1] == "flow-complete"
        assert flow_system.get_instance(instance_id) is None

    async def test_complete_is_terminal(self, flow_system: FlowSystem, linear_flow: Flow, recorder: Any) -> None:
        flow_system.register_flow(linear_flow)
        instance_id = await flow_system.start_flow("linear")

        await flow_system.complete_flow(instance_id)
        await flow_system.complete_flow(instance_id)
        flow_system.cancel_flow(instance_id)

        assert recorder.names.count("flow-complete") == 1
        assert "flow-cancel" not in recorder.names

    async def test_failing_on_complete_still_completes(self, flow_system: FlowSystem, linear_flow: Flow) -> None:
        def on_complete(data: dict[str, Any]) -> None:
            raise RuntimeError("mail server down")

        linear_flow.on_complete = on_complete
        flow_system.register_flow(linear_flow)
        instance_id = await flow_system.start_flow("linear")

        await flow_system.complete_flow(instance_id)

        assert flow_system.get_instance(instance_id) is None

    async def test_independent_systems(self, linear_flow: Flow) -> None:
        from litestar_flows.engine.system import FlowSystem

        first = FlowSystem()
        second = FlowSystem()
        first.register_flow(linear_flow)

        await first.start_flow("linear")

        assert second.get_flow("linear") is None
        assert second.get_active_instances() == []
        assert len(first.get_active_instances()) == 1
