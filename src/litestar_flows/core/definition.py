"""Flow definition structures.

This module provides the declarative building blocks of a flow: steps,
conditional rules, branches, settings, the flow itself and reusable flow
templates. Definitions are shared by every instance started from them and are
never mutated by the engine.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field, fields
from typing import TYPE_CHECKING, Any, TypeVar

from litestar_flows.core.types import (
    BranchConditionType,
    ConditionalLogic,
    ConditionalOperator,
    FlowData,
    FlowMode,
    FlowTargetType,
    StepHook,
    StepKind,
)

if TYPE_CHECKING:
    from litestar_flows.core.validation import ValidationResult, ValidatorFunction

__all__ = [
    "BranchCondition",
    "ConditionalRule",
    "ExplorationConfig",
    "Flow",
    "FlowBranch",
    "FlowCoordinates",
    "FlowSettings",
    "FlowStep",
    "FlowTemplate",
    "StepGuidance",
    "TransitionConfig",
]

_T = TypeVar("_T")
_MISSING = object()


def _pick(payload: Mapping[str, Any], *keys: str, default: Any = None) -> Any:
    """Return the first key present in ``payload``; accepts snake_case and camelCase spellings."""
    for key in keys:
        if key in payload:
            return payload[key]
    return default


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


def _build(cls: type[_T], payload: Mapping[str, Any]) -> _T:
    """Build a flat dataclass from a mapping with snake_case or camelCase keys; unknown keys are ignored."""
    values: dict[str, Any] = {}
    for item in fields(cls):  # type: ignore[arg-type]
        value = _pick(payload, item.name, _camel(item.name), default=_MISSING)
        if value is not _MISSING:
            values[item.name] = value
    return cls(**values)


def _coerce_operator(value: Any) -> ConditionalOperator | str:
    try:
        return ConditionalOperator(value)
    except ValueError:
        # Unknown operators are kept verbatim; evaluation treats them as permissive.
        return str(value)


@dataclass
class ConditionalRule:
    """Boolean predicate over instance data, optionally nested.

    When ``rules`` is non-empty the rule is a pure combinator: its children are
    evaluated and joined with ``logic``, and ``field``/``operator``/``value`` on
    this node are ignored.

    Attributes:
        field: Key into the instance data.
        operator: Comparison to apply to ``data[field]``.
        value: Comparand; unused by ``exists``/``not_exists``.
        logic: How to combine ``rules`` (``and`` by default).
        rules: Nested child rules.

    Example:
        >>> rule = ConditionalRule(
        ...     field="",
        ...     operator=ConditionalOperator.EXISTS,
        ...     logic=ConditionalLogic.OR,
        ...     rules=[
        ...         ConditionalRule("plan", ConditionalOperator.EQUALS, "pro"),
        ...         ConditionalRule("seats", ConditionalOperator.GREATER_THAN, 10),
        ...     ],
        ... )
    """

    field: str
    operator: ConditionalOperator | str = ConditionalOperator.EQUALS
    value: Any = None
    logic: ConditionalLogic | str = ConditionalLogic.AND
    rules: list[ConditionalRule] = field(default_factory=list)

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> ConditionalRule:
        """Build a rule tree from a plain mapping (e.g. decoded JSON).

        Args:
            payload: Mapping with ``field``, ``operator``, ``value``, ``logic`` and ``rules`` keys.

        Returns:
            The rule tree.
        """
        logic = payload.get("logic") or ConditionalLogic.AND
        return cls(
            field=payload.get("field", ""),
            operator=_coerce_operator(payload.get("operator", ConditionalOperator.EQUALS)),
            value=payload.get("value"),
            logic=ConditionalLogic.OR if logic == ConditionalLogic.OR else ConditionalLogic.AND,
            rules=[cls.from_dict(child) for child in payload.get("rules") or []],
        )


@dataclass
class BranchCondition:
    """Tagged union describing when a branch applies.

    Attributes:
        type: Which of ``rule``, ``expression`` or ``evaluate`` is used.
        rule: Rule evaluated for ``field`` conditions.
        expression: Restricted boolean expression over ``data`` for ``expression`` conditions.
        evaluate: Predicate ``(data) -> bool`` for ``custom`` conditions.
    """

    type: BranchConditionType | str
    rule: ConditionalRule | None = None
    expression: str | None = None
    evaluate: Callable[[FlowData], bool] | None = None

    @classmethod
    def from_rule(cls, rule: ConditionalRule) -> BranchCondition:
        return cls(type=BranchConditionType.FIELD, rule=rule)

    @classmethod
    def from_expression(cls, expression: str) -> BranchCondition:
        return cls(type=BranchConditionType.EXPRESSION, expression=expression)

    @classmethod
    def from_predicate(cls, evaluate: Callable[[FlowData], bool]) -> BranchCondition:
        return cls(type=BranchConditionType.CUSTOM, evaluate=evaluate)

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> BranchCondition:
        """Build a ``field`` or ``expression`` condition from a plain mapping."""
        rule = payload.get("rule")
        return cls(
            type=payload.get("type", BranchConditionType.FIELD),
            rule=ConditionalRule.from_dict(rule) if rule else None,
            expression=payload.get("expression"),
        )


@dataclass
class FlowBranch:
    """Conditional override of the default sequential step order.

    Attributes:
        id: Unique identifier of the branch.
        from_step_id: Step the branch leaves from.
        condition: When the branch applies.
        target_step_id: Step the branch leads to.
        priority: Higher priorities are evaluated first; ties keep declaration order.
    """

    id: str
    from_step_id: str
    condition: BranchCondition
    target_step_id: str
    priority: int = 0

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> FlowBranch:
        return cls(
            id=payload["id"],
            from_step_id=_pick(payload, "from_step_id", "fromStepId"),
            condition=BranchCondition.from_dict(payload.get("condition") or {}),
            target_step_id=_pick(payload, "target_step_id", "targetStepId"),
            priority=payload.get("priority") or 0,
        )


@dataclass
class FlowCoordinates:
    """Position a navigation step moves the viewer to."""

    x: float
    y: float
    z: float | None = None


@dataclass
class TransitionConfig:
    """Visual transition used by navigation steps."""

    type: str = "fade"
    duration: int | None = None
    easing: str | None = None


@dataclass
class ExplorationConfig:
    """Boundaries for free exploration from a navigation step."""

    max_distance: float | None = None
    allowed_contexts: list[str] = field(default_factory=list)
    restrict_to_scene: bool = False


@dataclass
class StepGuidance:
    """Presentation hints for form-like steps.

    The engine carries these through untouched for renderers.
    """

    prompt: str | None = None
    helper_text: str | None = None
    tooltip: dict[str, Any] | None = None
    focus_ring: dict[str, Any] | None = None
    animation: dict[str, Any] | None = None


@dataclass
class FlowStep:
    """A single stage of a flow.

    Attributes:
        id: Unique identifier of the step within its flow.
        title: Display title.
        order: Position hint for renderers; the engine follows list order.
        step_type: How the step is rendered.
        description: Optional longer description.
        target_type: Navigation steps: kind of target.
        target_id: Navigation steps: id of the target.
        coordinates: Navigation steps: position to move to.
        transition: Navigation steps: visual transition.
        allow_exploration: Navigation steps: whether free exploration is allowed.
        exploration_boundaries: Navigation steps: limits on exploration.
        component: Form-like steps: renderer reference, opaque to the engine.
        props: Form-like steps: renderer properties.
        validator: ``(step_data, instance_data) -> ValidationResult``, sync or async.
        guidance: Form-like steps: presentation hints.
        condition: Visibility rule; the step is visible when absent.
        on_enter: Hook awaited when the step becomes current.
        on_exit: Hook awaited when the step stops being current.
        on_validate: ``(data) -> ValidationResult`` hook, sync or async.
    """

    id: str
    title: str = ""
    order: int = 0
    step_type: StepKind | str = StepKind.CONTENT
    description: str | None = None
    target_type: FlowTargetType | None = None
    target_id: str | None = None
    coordinates: FlowCoordinates | None = None
    transition: TransitionConfig | None = None
    allow_exploration: bool = False
    exploration_boundaries: ExplorationConfig | None = None
    component: Any = None
    props: dict[str, Any] = field(default_factory=dict)
    validator: ValidatorFunction | None = None
    guidance: StepGuidance | None = None
    condition: ConditionalRule | None = None
    on_enter: StepHook | None = None
    on_exit: StepHook | None = None
    on_validate: Callable[[FlowData], ValidationResult | Awaitable[ValidationResult]] | None = None

    @property
    def has_validation(self) -> bool:
        return self.on_validate is not None or self.validator is not None

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> FlowStep:
        """Build a step from declarative data; hooks and validators must be attached in code."""
        condition = payload.get("condition")
        coordinates = payload.get("coordinates")
        transition = payload.get("transition")
        boundaries = _pick(payload, "exploration_boundaries", "explorationBoundaries")
        guidance = payload.get("guidance")
        return cls(
            id=payload["id"],
            title=payload.get("title", ""),
            order=payload.get("order", 0),
            step_type=_pick(payload, "step_type", "stepType", default=StepKind.CONTENT),
            description=payload.get("description"),
            target_type=_pick(payload, "target_type", "targetType"),
            target_id=_pick(payload, "target_id", "targetId"),
            coordinates=_build(FlowCoordinates, coordinates) if coordinates else None,
            transition=_build(TransitionConfig, transition) if transition else None,
            allow_exploration=_pick(payload, "allow_exploration", "allowExploration", default=False),
            exploration_boundaries=_build(ExplorationConfig, boundaries) if boundaries else None,
            component=payload.get("component"),
            props=dict(payload.get("props") or {}),
            guidance=_build(StepGuidance, guidance) if guidance else None,
            condition=ConditionalRule.from_dict(condition) if condition else None,
        )


@dataclass
class FlowSettings:
    """Presentation and navigation settings of a flow.

    Attributes:
        show_progress: Whether renderers should show a progress indicator.
        progress_position: ``top``, ``bottom`` or ``side``.
        allow_back: Whether ``previous_step`` is permitted.
        allow_skip: Whether ``skip_step`` is permitted.
        allow_rewind: Whether renderers may offer jumping to visited steps.
        auto_advance: Whether renderers should advance automatically.
        auto_advance_delay: Delay before auto-advancing, in milliseconds.
        auto_save: Persist instance state after every transition.
        auto_save_interval: Suggested save interval for renderers, in milliseconds.
        storage_key: Key under which a persistence layer stores state.
        presentation_mode: ``modal``, ``drawer``, ``full-screen`` or ``inline``.
        exploration_mode: ``on-pause``, ``always`` or ``never`` (hybrid flows).
    """

    show_progress: bool = True
    progress_position: str = "top"
    allow_back: bool = True
    allow_skip: bool = False
    allow_rewind: bool = False
    auto_advance: bool = False
    auto_advance_delay: int | None = None
    auto_save: bool = False
    auto_save_interval: int | None = None
    storage_key: str | None = None
    presentation_mode: str = "modal"
    exploration_mode: str = "never"


@dataclass
class Flow:
    """Reusable definition of an ordered set of steps plus optional branches.

    Attributes:
        id: Unique identifier of the flow.
        name: Display name.
        steps: Steps in declaration order.
        description: Optional longer description.
        mode: Level of user control.
        branches: Conditional overrides of the sequential order.
        settings: Presentation and navigation settings.
        initial_data: Data every instance starts with.
        on_complete: Called (and awaited if async) with the final data on completion.
        on_cancel: Called when an instance is cancelled.
        on_step_change: Called with ``(new_step_id, previous_step_id)`` after each transition.

    Example:
        >>> flow = Flow(
        ...     id="onboarding",
        ...     name="Onboarding",
        ...     steps=[FlowStep(id="welcome"), FlowStep(id="profile"), FlowStep(id="done")],
        ... )
    """

    id: str
    name: str = ""
    steps: list[FlowStep] = field(default_factory=list)
    description: str | None = None
    mode: FlowMode | str = FlowMode.GUIDED
    branches: list[FlowBranch] = field(default_factory=list)
    settings: FlowSettings = field(default_factory=FlowSettings)
    initial_data: FlowData = field(default_factory=dict)
    on_complete: Callable[[FlowData], Awaitable[None] | None] | None = None
    on_cancel: Callable[[], None] | None = None
    on_step_change: Callable[[str, str | None], None] | None = None

    def get_step(self, step_id: str) -> FlowStep | None:
        """Return the step with ``step_id``, or None."""
        for step in self.steps:
            if step.id == step_id:
                return step
        return None

    def index_of(self, step_id: str) -> int:
        """Return the declaration index of ``step_id``, or -1 if absent."""
        for index, step in enumerate(self.steps):
            if step.id == step_id:
                return index
        return -1

    def branches_from(self, step_id: str) -> list[FlowBranch]:
        """Return the branches leaving ``step_id`` in declaration order."""
        return [branch for branch in self.branches if branch.from_step_id == step_id]

    def validate(self) -> list[str]:
        """Check the definition for structural problems.

        Returns:
            List of validation error messages. Empty list if valid.

        Example:
            >>> errors = flow.validate()
            >>> if errors:
            ...     print("Validation errors:", errors)
        """
        errors: list[str] = []

        if not self.steps:
            errors.append(f"Flow '{self.id}' has no steps")

        seen: set[str] = set()
        for step in self.steps:
            if step.id in seen:
                errors.append(f"Duplicate step id '{step.id}'")
            seen.add(step.id)

        for branch in self.branches:
            if branch.from_step_id not in seen:
                errors.append(f"Branch '{branch.id}': source step '{branch.from_step_id}' not found")
            if branch.target_step_id not in seen:
                errors.append(f"Branch '{branch.id}': target step '{branch.target_step_id}' not found")

            condition = branch.condition
            if condition.type == BranchConditionType.FIELD and condition.rule is None:
                errors.append(f"Branch '{branch.id}': field condition has no rule")
            elif condition.type == BranchConditionType.EXPRESSION and not condition.expression:
                errors.append(f"Branch '{branch.id}': expression condition has no expression")
            elif condition.type == BranchConditionType.CUSTOM and condition.evaluate is None:
                errors.append(f"Branch '{branch.id}': custom condition has no predicate")

        return errors

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> Flow:
        """Build a flow from declarative data (steps, branches, settings, initial data).

        Callbacks, hooks and custom branch predicates cannot be expressed as
        data and must be attached afterwards.
        """
        settings = payload.get("settings") or {}
        return cls(
            id=payload["id"],
            name=payload.get("name", ""),
            description=payload.get("description"),
            mode=payload.get("mode", FlowMode.GUIDED),
            steps=[FlowStep.from_dict(step) for step in payload.get("steps") or []],
            branches=[FlowBranch.from_dict(branch) for branch in payload.get("branches") or []],
            settings=_build(FlowSettings, settings),
            initial_data=dict(_pick(payload, "initial_data", "initialData", default=None) or {}),
        )


@dataclass
class FlowTemplate:
    """Reusable flow pattern from which concrete flows are created.

    Attributes:
        id: Unique identifier of the template.
        name: Display name.
        template: The flow blueprint; its ``id`` is replaced on instantiation.
        description: Optional longer description.
        category: Optional category used to filter templates.
        tags: Free-form tags.
    """

    id: str
    name: str
    template: Flow
    description: str | None = None
    category: str | None = None
    tags: list[str] = field(default_factory=list)
