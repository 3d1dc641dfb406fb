"""Flow system: instance lifecycle and step navigation.

This module provides :class:`FlowSystem`, the in-process engine that starts
flow instances, moves them between steps, runs step hooks and validators, and
publishes lifecycle events. It runs on a single asyncio event loop; hooks may
be plain functions or coroutines.
"""

from __future__ import annotations

import asyncio
import inspect
import time
from collections.abc import Callable, Mapping
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from litestar_flows.config import FlowEngineConfig
from litestar_flows.core.events import (
    FlowCanceled,
    FlowCompleted,
    FlowDataUpdated,
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
from litestar_flows.core.validation import ValidationResult, run_validator
from litestar_flows.engine.branches import resolve_next_step
from litestar_flows.engine.conditions import is_step_visible
from litestar_flows.engine.registry import FlowRegistry
from litestar_flows.engine.store import FlowInstanceStore
from litestar_flows.exceptions import (
    FlowInstanceNotFoundError,
    FlowNotFoundError,
    FlowsError,
    NoVisibleStepsError,
    StepHookError,
    StepNotFoundError,
    StepNotVisibleError,
)
from litestar_flows.log import get_logger

if TYPE_CHECKING:
    from litestar_flows.core.definition import Flow, FlowStep, FlowTemplate
    from litestar_flows.core.events import EventHandler
    from litestar_flows.core.types import FlowEventType
    from litestar_flows.engine.persistence import FlowStatePersistence

__all__ = ["FlowSystem"]

logger = get_logger(__name__)


class _InstanceClosed(Exception):
    """The instance was completed or cancelled while a hook was suspended."""


def _now() -> datetime:
    return datetime.now(timezone.utc)


class FlowSystem:
    """In-memory engine for flow instances.

    The system owns a registry of flow definitions, a store of live instances
    and an event bus. Navigation calls (``next_step``, ``previous_step``,
    ``go_to_step``, ``skip_step``) are coroutines returning whether the
    instance moved; they never raise for operational problems such as an
    unknown instance id, which are logged instead.

    Attributes:
        registry: Flow and template definitions.
        event_bus: Publishes lifecycle events.
        store: Live instances.
        config: Behavioural switches.
        persistence: Optional state persistence backend.
        _counter: Monotonic counter used in instance ids.
        _locks: Per-instance navigation locks.
        _hook_tasks: In-flight hook tasks per instance, cancelled by ``cancel_flow``.

    Example:
        >>> system = FlowSystem()
        >>> system.register_flow(Flow(id="tour", steps=[FlowStep(id="a"), FlowStep(id="b")]))
        >>> instance_id = await system.start_flow("tour")
        >>> await system.next_step(instance_id)
        True
    """

    def __init__(
        self,
        registry: FlowRegistry | None = None,
        event_bus: FlowEventBus | None = None,
        store: FlowInstanceStore | None = None,
        config: FlowEngineConfig | None = None,
        persistence: FlowStatePersistence | None = None,
    ) -> None:
        """Initialize the flow system.

        Args:
            registry: Flow registry; a new empty one is created when omitted.
            event_bus: Event bus; a new one is created when omitted.
            store: Instance store; a new empty one is created when omitted.
            config: Engine configuration; defaults apply when omitted.
            persistence: Optional backend used by ``save_instance_state``,
                ``load_instance_state`` and ``settings.auto_save``.
        """
        self.registry = registry if registry is not None else FlowRegistry()
        self.event_bus = event_bus if event_bus is not None else FlowEventBus()
        self.store = store if store is not None else FlowInstanceStore()
        self.config = config if config is not None else FlowEngineConfig()
        self.persistence = persistence
        self._counter = 0
        self._locks: dict[str, asyncio.Lock] = {}
        self._hook_tasks: dict[str, set[asyncio.Future[Any]]] = {}

    # Registry

    def register_flow(self, flow: Flow) -> None:
        self.registry.register_flow(flow)

    def get_flow(self, flow_id: str) -> Flow | None:
        return self.registry.get_flow(flow_id)

    def unregister_flow(self, flow_id: str) -> bool:
        return self.registry.unregister_flow(flow_id)

    def get_all_flows(self) -> list[Flow]:
        return self.registry.get_all_flows()

    def register_template(self, template: FlowTemplate) -> None:
        self.registry.register_template(template)

    def get_template(self, template_id: str) -> FlowTemplate | None:
        return self.registry.get_template(template_id)

    def get_all_templates(self, category: str | None = None) -> list[FlowTemplate]:
        return self.registry.get_all_templates(category)

    def create_flow_from_template(self, template_id: str, overrides: Mapping[str, Any] | None = None) -> Flow | None:
        return self.registry.create_flow_from_template(template_id, overrides)

    # Events

    def on(self, event: FlowEventType | str, handler: EventHandler) -> Callable[[], None]:
        """Subscribe to an event; returns a callable that unsubscribes."""
        return self.event_bus.on(event, handler)

    # Instance lifecycle

    async def start_flow(self, flow_id: str, initial_data: Mapping[str, Any] | None = None) -> str:
        """Start a new instance of a registered flow.

        The instance starts on the first step visible under the merged
        ``flow.initial_data`` and ``initial_data``. ``flow-start`` is published,
        the step's ``on_enter`` hook is awaited and ``flow-step-enter`` is
        published.

        Args:
            flow_id: Id of the registered flow.
            initial_data: Data merged over the flow's ``initial_data``.

        Returns:
            The new instance id.

        Raises:
            FlowNotFoundError: If the flow is not registered.
            NoVisibleStepsError: If no step is visible under the starting data.
            StepHookError: If the first step's ``on_enter`` hook raised; the
                instance is discarded.

        Example:
            >>> instance_id = await system.start_flow("onboarding", {"plan": "pro"})
        """
        flow = self.registry.get_flow(flow_id)
        if flow is None:
            raise FlowNotFoundError(flow_id)

        data = {**flow.initial_data, **(initial_data or {})}
        first_step = next((step for step in flow.steps if is_step_visible(step, data)), None)
        if first_step is None:
            raise NoVisibleStepsError(flow_id)

        self._counter += 1
        instance_id = f"{flow_id}-instance-{self._counter}-{int(time.time() * 1000)}"

        state = FlowState(
            flow_id=flow_id,
            current_step_id=first_step.id,
            current_step_index=flow.index_of(first_step.id),
            started_at=_now(),
            data=data,
        )
        instance = FlowInstance(id=instance_id, flow=flow, state=state)
        self.store.add(instance)
        logger.info("Flow started", flow_id=flow_id, instance_id=instance_id, step_id=first_step.id)

        self.event_bus.emit(FlowStarted(instance_id, flow=flow))

        try:
            await self._run_hook(instance, first_step, "on_enter")
        except _InstanceClosed:
            return instance_id
        except StepHookError:
            self._discard(instance_id)
            logger.error("Flow start aborted by failing hook", flow_id=flow_id, instance_id=instance_id)
            raise

        if self._is_live(instance):
            self.event_bus.emit(StepEntered(instance_id, step_id=first_step.id, step=first_step))
            await self._auto_save(instance)
        return instance_id

    def get_instance(self, instance_id: str) -> FlowInstance | None:
        return self.store.get(instance_id)

    def get_state(self, instance_id: str) -> FlowState | None:
        instance = self.store.get(instance_id)
        return instance.state if instance else None

    def get_active_instances(self) -> list[FlowInstance]:
        """Return every live instance in start order."""
        return self.store.all()

    def get_current_step(self, instance_id: str) -> FlowStep | None:
        instance = self.store.get(instance_id)
        return instance.current_step if instance else None

    def update_instance_data(self, instance_id: str, data: Mapping[str, Any]) -> None:
        """Shallow-merge ``data`` into the instance data and publish ``flow-data-update``.

        Args:
            instance_id: The instance id.
            data: Keys to set; existing keys not present are kept.
        """
        instance = self._lookup(instance_id, "update_instance_data")
        if instance is None:
            return

        instance.state.data = {**instance.state.data, **data}
        self.event_bus.emit(FlowDataUpdated(instance_id, data=instance.state.data))

    async def complete_flow(self, instance_id: str) -> None:
        """Complete an instance.

        Marks the state complete, awaits the flow's ``on_complete`` callback
        with the final data, publishes ``flow-complete`` and removes the
        instance. An ``on_complete`` callback that raises is logged and does not
        stop completion. A call made while the instance is already completing
        returns without running the callback again.

        Args:
            instance_id: The instance id.
        """
        instance = self._lookup(instance_id, "complete_flow")
        if instance is None:
            return
        try:
            await self._complete(instance)
        except _InstanceClosed:
            return

    def cancel_flow(self, instance_id: str) -> None:
        """Cancel an instance.

        In-flight hooks are cancelled without being awaited, the flow's
        ``on_cancel`` callback is called, ``flow-cancel`` is published and the
        instance is removed. A navigation call suspended in one of those hooks
        returns False and publishes nothing more.

        Args:
            instance_id: The instance id.
        """
        instance = self._lookup(instance_id, "cancel_flow")
        if instance is None:
            return

        for task in self._hook_tasks.pop(instance_id, set()):
            task.cancel()

        if instance.flow.on_cancel is not None:
            try:
                instance.flow.on_cancel()
            except Exception:
                logger.exception("Flow on_cancel callback raised", instance_id=instance_id)

        self.event_bus.emit(FlowCanceled(instance_id))
        self._discard(instance_id)
        logger.info("Flow cancelled", flow_id=instance.flow.id, instance_id=instance_id)

    def pause_flow(self, instance_id: str) -> None:
        instance = self._lookup(instance_id, "pause_flow")
        if instance is None:
            return
        instance.state.is_paused = True
        self.event_bus.emit(FlowPaused(instance_id))

    def resume_flow(self, instance_id: str) -> None:
        instance = self._lookup(instance_id, "resume_flow")
        if instance is None:
            return
        instance.state.is_paused = False
        self.event_bus.emit(FlowResumed(instance_id))

    # Navigation

    async def next_step(self, instance_id: str) -> bool:
        """Advance an instance to its next step.

        The current step is validated first (when ``validate_on_next`` is set
        and the step has validators); a failing result blocks the move. Then
        the current step is exited and the next step is resolved from the
        branches leaving it, falling back to the next visible step in order.
        When no step follows, the flow completes.

        Args:
            instance_id: The instance id.

        Returns:
            True if the instance moved to another step. False if it did not
            move, including when the flow completed.

        Raises:
            StepHookError: If a hook raised; the instance is back on the step it
                started from.
        """
        return await self._navigate(instance_id, "next_step", self._advance, True)

    async def skip_step(self, instance_id: str) -> bool:
        """Advance like ``next_step`` without running validation.

        Only permitted when the flow's ``settings.allow_skip`` is set.
        """
        instance = self._lookup(instance_id, "skip_step")
        if instance is None:
            return False
        if not instance.flow.settings.allow_skip:
            logger.debug("Skipping is disabled for this flow", instance_id=instance_id, flow_id=instance.flow.id)
            return False
        return await self._navigate(instance_id, "skip_step", self._advance, False)

    async def previous_step(self, instance_id: str) -> bool:
        """Move an instance back to the most recently visited step.

        Returns:
            False when there is no history or the flow's ``settings.allow_back``
            is off, True after moving back.
        """
        return await self._navigate(instance_id, "previous_step", self._retreat)

    async def go_to_step(self, instance_id: str, step_id: str) -> bool:
        """Jump to a specific step.

        The target must exist, be visible under the current data and differ
        from the current step; otherwise the call is logged and returns False
        without touching the state. The current step is pushed onto the
        history, so ``previous_step`` returns to it.

        Args:
            instance_id: The instance id.
            step_id: The target step id.

        Returns:
            True if the instance moved to ``step_id``.
        """
        return await self._navigate(instance_id, "go_to_step", self._jump, step_id)

    # Validation

    async def validate_step(self, instance_id: str, step_id: str | None = None) -> ValidationResult | None:
        """Run a step's validators and record the result.

        ``on_validate(data)`` runs first, then ``validator(step_data, data)``
        where ``step_data`` is ``data[step_id]``. A failing result is stored in
        ``state.errors[step_id]`` and published as ``flow-validation-error``; a
        passing result clears the entry.

        Args:
            instance_id: The instance id.
            step_id: Step to validate; defaults to the current step.

        Returns:
            The combined result, or None if the instance or step is unknown.
        """
        instance = self._lookup(instance_id, "validate_step")
        if instance is None:
            return None
        step = instance.flow.get_step(step_id or instance.state.current_step_id)
        if step is None:
            logger.warning("Step not found", instance_id=instance_id, step_id=step_id)
            return None
        try:
            return await self._validate(instance, step)
        except _InstanceClosed:
            return None

    # Persistence

    async def save_instance_state(self, instance_id: str) -> None:
        """Persist the state of a live instance.

        Raises:
            FlowInstanceNotFoundError: If the instance is not live.
            FlowsError: If no persistence backend is configured.
        """
        instance = self.store.require(instance_id)
        await self._require_persistence().save_state(instance_id, instance.state.to_dict())

    async def load_instance_state(self, instance_id: str) -> FlowState:
        """Restore an instance from its persisted state.

        A live instance has its state replaced. Otherwise the instance is
        re-created from the registered flow under the same id. No hooks run and
        no events are published.

        Returns:
            The restored state.

        Raises:
            FlowInstanceNotFoundError: If nothing is stored for ``instance_id``.
            FlowNotFoundError: If the instance is not live and its flow is not registered.
            FlowsError: If no persistence backend is configured.
        """
        payload = await self._require_persistence().load_state(instance_id)
        if payload is None:
            raise FlowInstanceNotFoundError(instance_id)

        state = FlowState.from_dict(payload)
        instance = self.store.get(instance_id)
        if instance is not None:
            instance.state = state
            return state

        flow = self.registry.get_flow(state.flow_id)
        if flow is None:
            raise FlowNotFoundError(state.flow_id)
        self.store.add(FlowInstance(id=instance_id, flow=flow, state=state))
        logger.info("Flow instance restored", flow_id=flow.id, instance_id=instance_id, step_id=state.current_step_id)
        return state

    # Context

    def get_context(self, instance_id: str) -> FlowContext | None:
        """Return a read-only snapshot of an instance for renderers.

        Returns:
            The context, or None if the instance is not live.
        """
        instance = self.store.get(instance_id)
        if instance is None or instance.current_step is None:
            return None

        flow = instance.flow
        state = instance.state
        blocked = state.is_paused and self.config.block_navigation_when_paused

        visible = [step.id for step in flow.steps if is_step_visible(step, state.data)]
        if state.current_step_id in visible:
            position = visible.index(state.current_step_id) + 1
        else:
            position = len(set(visible) & {*state.visited_steps, state.current_step_id})
        progress = round(position * 100 / len(visible)) if visible else 0

        next_step = resolve_next_step(flow, state.current_step_index, state.data, self.config.max_expression_length)
        return FlowContext(
            instance_id=instance.id,
            flow=flow,
            state=state,
            current_step=instance.current_step,
            is_first_step=not state.visited_steps,
            is_last_step=next_step is None,
            can_go_back=bool(state.visited_steps) and flow.settings.allow_back and not blocked,
            can_go_next=not blocked and not state.is_complete,
            progress=progress,
        )

    # Internals

    def _lookup(self, instance_id: str, operation: str) -> FlowInstance | None:
        instance = self.store.get(instance_id)
        if instance is None:
            logger.warning("Flow instance not found", instance_id=instance_id, operation=operation)
        return instance

    def _is_live(self, instance: FlowInstance) -> bool:
        return self.store.get(instance.id) is instance

    def _discard(self, instance_id: str) -> None:
        self.store.remove(instance_id)
        self._locks.pop(instance_id, None)
        self._hook_tasks.pop(instance_id, None)

    def _require_persistence(self) -> FlowStatePersistence:
        if self.persistence is None:
            msg = "No flow state persistence configured"
            raise FlowsError(msg)
        return self.persistence

    async def _auto_save(self, instance: FlowInstance) -> None:
        if self.persistence is not None and instance.flow.settings.auto_save:
            await self.persistence.save_state(instance.id, instance.state.to_dict())

    async def _navigate(self, instance_id: str, operation: str, action: Callable[..., Any], *args: Any) -> bool:
        instance = self._lookup(instance_id, operation)
        if instance is None:
            return False

        if not self.config.serialize_navigation:
            return await self._guarded(instance, operation, action, *args)

        lock = self._locks.setdefault(instance_id, asyncio.Lock())
        async with lock:
            # The instance may have been removed while waiting for the lock
            if not self._is_live(instance):
                return False
            return await self._guarded(instance, operation, action, *args)

    async def _guarded(self, instance: FlowInstance, operation: str, action: Callable[..., Any], *args: Any) -> bool:
        if instance.state.is_paused and self.config.block_navigation_when_paused:
            logger.warning("Navigation refused while paused", instance_id=instance.id, operation=operation)
            return False
        try:
            return bool(await action(instance, *args))
        except _InstanceClosed:
            logger.debug("Flow instance closed during navigation", instance_id=instance.id, operation=operation)
            return False

    async def _advance(self, instance: FlowInstance, validate: bool) -> bool:
        state = instance.state
        current = instance.current_step
        if current is None:
            logger.warning("Current step not found", instance_id=instance.id, step_id=state.current_step_id)
            return False

        if validate and self.config.validate_on_next and current.has_validation:
            result = await self._validate(instance, current)
            if not result.is_valid:
                logger.debug("Step validation failed, not advancing", instance_id=instance.id, step_id=current.id)
                return False

        await self._exit(instance, current)

        target = resolve_next_step(instance.flow, state.current_step_index, state.data, self.config.max_expression_length)
        if target is None:
            await self._complete(instance)
            return False

        return await self._enter(instance, current, target, push=True)

    async def _retreat(self, instance: FlowInstance) -> bool:
        state = instance.state
        if not state.visited_steps:
            return False
        if not instance.flow.settings.allow_back:
            logger.debug("Going back is disabled for this flow", instance_id=instance.id, flow_id=instance.flow.id)
            return False

        current = instance.current_step
        target = instance.flow.get_step(state.visited_steps[-1])
        if current is None or target is None:
            logger.warning("Step not found", instance_id=instance.id, step_id=state.visited_steps[-1])
            return False

        await self._exit(instance, current)
        return await self._enter(instance, current, target, push=False)

    async def _jump(self, instance: FlowInstance, step_id: str) -> bool:
        current = instance.current_step
        if current is None:
            logger.warning("Current step not found", instance_id=instance.id, step_id=instance.state.current_step_id)
            return False
        try:
            target = self._jump_target(instance, step_id)
        except (StepNotFoundError, StepNotVisibleError) as exc:
            logger.warning("Cannot go to step", instance_id=instance.id, step_id=step_id, reason=str(exc))
            return False
        if target.id == current.id:
            logger.debug("Already on step", instance_id=instance.id, step_id=step_id)
            return False

        await self._exit(instance, current)
        return await self._enter(instance, current, target, push=True)

    def _jump_target(self, instance: FlowInstance, step_id: str) -> FlowStep:
        target = instance.flow.get_step(step_id)
        if target is None:
            raise StepNotFoundError(instance.flow.id, step_id)
        if not is_step_visible(target, instance.state.data):
            raise StepNotVisibleError(step_id)
        return target

    async def _exit(self, instance: FlowInstance, current: FlowStep) -> None:
        await self._run_hook(instance, current, "on_exit")
        self._ensure_live(instance)
        self.event_bus.emit(StepExited(instance.id, step_id=current.id, step=current))

    async def _enter(self, instance: FlowInstance, current: FlowStep, target: FlowStep, push: bool) -> bool:
        state = instance.state
        snapshot = (state.current_step_id, state.current_step_index, list(state.visited_steps))

        if push:
            state.visited_steps.append(current.id)
        else:
            state.visited_steps.pop()
        state.current_step_id = target.id
        state.current_step_index = instance.flow.index_of(target.id)

        try:
            await self._run_hook(instance, target, "on_enter")
        except StepHookError:
            state.current_step_id, state.current_step_index, state.visited_steps = snapshot
            logger.error("Transition rolled back", instance_id=instance.id, from_step_id=current.id, to_step_id=target.id)
            raise
        self._ensure_live(instance)

        self.event_bus.emit(StepChanged(instance.id, from_step_id=current.id, to_step_id=target.id))
        self.event_bus.emit(StepEntered(instance.id, step_id=target.id, step=target))
        if instance.flow.on_step_change is not None:
            try:
                instance.flow.on_step_change(target.id, current.id)
            except Exception:
                logger.exception("Flow on_step_change callback raised", instance_id=instance.id)

        logger.debug("Step changed", instance_id=instance.id, from_step_id=current.id, to_step_id=target.id)
        await self._auto_save(instance)
        return True

    async def _complete(self, instance: FlowInstance) -> None:
        state = instance.state
        if state.is_complete:
            logger.debug("Flow is already completing", instance_id=instance.id)
            return
        state.is_complete = True
        state.completed_at = _now()

        if instance.flow.on_complete is not None:
            try:
                await self._call(instance.id, instance.flow.on_complete, state.data)
            except _InstanceClosed:
                raise
            except Exception:
                logger.exception("Flow on_complete callback raised", instance_id=instance.id)
            self._ensure_live(instance)

        self.event_bus.emit(FlowCompleted(instance.id, data=state.data))
        self._discard(instance.id)
        logger.info("Flow completed", flow_id=instance.flow.id, instance_id=instance.id)

    async def _validate(self, instance: FlowInstance, step: FlowStep) -> ValidationResult:
        state = instance.state
        result = ValidationResult.ok()
        state.is_validating = True
        try:
            if step.on_validate is not None:
                result = result.merge(await self._run_validation_hook(instance, step, "on_validate", state.data))
            if step.validator is not None:
                outcome = await self._run_validation_hook(
                    instance, step, "validator", state.data.get(step.id), state.data
                )
                result = result.merge(outcome)
        finally:
            state.is_validating = False
        self._ensure_live(instance)

        if result.is_valid:
            state.errors.pop(step.id, None)
        else:
            state.errors[step.id] = result
            self.event_bus.emit(StepValidationFailed(instance.id, step_id=step.id, errors=result))
        return result

    async def _run_validation_hook(self, instance: FlowInstance, step: FlowStep, name: str, *args: Any) -> ValidationResult:
        try:
            if name == "validator":
                return await self._track(instance.id, run_validator(step.validator, *args))  # type: ignore[arg-type]
            return await self._call(instance.id, step.on_validate, *args)  # type: ignore[arg-type]
        except _InstanceClosed:
            raise
        except Exception as exc:
            if not self.config.rollback_on_hook_error:
                raise
            logger.exception("Step validation hook raised", instance_id=instance.id, step_id=step.id, hook=name)
            raise StepHookError(step.id, name, exc) from exc

    async def _run_hook(self, instance: FlowInstance, step: FlowStep, name: str) -> None:
        hook = getattr(step, name)
        if hook is None:
            return
        try:
            await self._call(instance.id, hook, instance.state.data)
        except _InstanceClosed:
            raise
        except Exception as exc:
            if not self.config.rollback_on_hook_error:
                raise
            logger.exception("Step hook raised", instance_id=instance.id, step_id=step.id, hook=name)
            raise StepHookError(step.id, name, exc) from exc

    async def _call(self, instance_id: str, func: Callable[..., Any], *args: Any) -> Any:
        result = func(*args)
        if inspect.isawaitable(result):
            return await self._track(instance_id, result)
        return result

    async def _track(self, instance_id: str, awaitable: Any) -> Any:
        """Run ``awaitable`` as a task that ``cancel_flow`` can cancel."""
        task = asyncio.ensure_future(awaitable)
        tasks = self._hook_tasks.setdefault(instance_id, set())
        tasks.add(task)
        try:
            return await task
        except asyncio.CancelledError:
            if instance_id not in self.store:
                raise _InstanceClosed from None
            raise
        finally:
            tasks.discard(task)

    def _ensure_live(self, instance: FlowInstance) -> None:
        if not self._is_live(instance):
            raise _InstanceClosed
