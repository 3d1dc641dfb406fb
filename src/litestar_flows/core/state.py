"""Runtime state of flow instances.

This module provides the mutable per-instance state, the instance record that
binds that state to its flow definition, and a read-only context snapshot for
renderers.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

from litestar_flows.core.validation import ValidationResult

if TYPE_CHECKING:
    from litestar_flows.core.definition import Flow, FlowStep

__all__ = ["FlowContext", "FlowInstance", "FlowState"]


@dataclass
class FlowState:
    """Mutable progress of one flow instance.

    Attributes:
        flow_id: Id of the flow definition the instance runs.
        current_step_id: Id of the current step.
        current_step_index: Declaration index of the current step.
        visited_steps: Stack of previously-current step ids, used for back navigation.
            Never contains the current step.
        data: Accumulated key/value bag; only ever shallow-merged.
        errors: Latest failing validation result per step id, in insertion order.
        is_validating: True while validators are running.
        is_complete: True once the instance completed.
        is_paused: True while the instance is paused.
        started_at: When the instance started.
        completed_at: When the instance completed.
    """

    flow_id: str
    current_step_id: str
    current_step_index: int
    started_at: datetime
    visited_steps: list[str] = field(default_factory=list)
    data: dict[str, Any] = field(default_factory=dict)
    errors: dict[str, ValidationResult] = field(default_factory=dict)
    is_validating: bool = False
    is_complete: bool = False
    is_paused: bool = False
    completed_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize the state to plain Python types.

        Returns:
            A dict suitable for JSON encoding, provided ``data`` is.
        """
        return {
            "flow_id": self.flow_id,
            "current_step_id": self.current_step_id,
            "current_step_index": self.current_step_index,
            "visited_steps": list(self.visited_steps),
            "data": dict(self.data),
            "errors": {step_id: result.to_dict() for step_id, result in self.errors.items()},
            "is_validating": self.is_validating,
            "is_complete": self.is_complete,
            "is_paused": self.is_paused,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> FlowState:
        """Rebuild a state from :meth:`to_dict` output."""
        completed_at = payload.get("completed_at")
        return cls(
            flow_id=payload["flow_id"],
            current_step_id=payload["current_step_id"],
            current_step_index=payload["current_step_index"],
            visited_steps=list(payload.get("visited_steps", [])),
            data=dict(payload.get("data", {})),
            errors={
                step_id: ValidationResult.from_dict(result) for step_id, result in payload.get("errors", {}).items()
            },
            is_validating=payload.get("is_validating", False),
            is_complete=payload.get("is_complete", False),
            is_paused=payload.get("is_paused", False),
            started_at=datetime.fromisoformat(payload["started_at"]),
            completed_at=datetime.fromisoformat(completed_at) if completed_at else None,
        )


@dataclass
class FlowInstance:
    """One running execution of a flow.

    The instance holds a direct reference to the flow it was started from, so
    re-registering a flow under the same id does not affect running instances.

    Attributes:
        id: Unique instance id.
        flow: The flow definition, bound at start.
        state: The mutable progress state.
    """

    id: str
    flow: Flow
    state: FlowState

    @property
    def current_step(self) -> FlowStep | None:
        return self.flow.get_step(self.state.current_step_id)


@dataclass
class FlowContext:
    """Read-only snapshot handed to step renderers.

    Attributes:
        instance_id: Id of the instance.
        flow: The bound flow definition.
        state: The instance state at snapshot time.
        current_step: The current step.
        is_first_step: No step precedes the current one in history.
        is_last_step: Advancing from here would complete the flow.
        can_go_back: ``previous_step`` would be accepted.
        can_go_next: ``next_step`` would be accepted.
        progress: Percentage of visible steps reached, 0 to 100.
    """

    instance_id: str
    flow: Flow
    state: FlowState
    current_step: FlowStep
    is_first_step: bool
    is_last_step: bool
    can_go_back: bool
    can_go_next: bool
    progress: int

    def step_data(self, step_id: str) -> Any:
        """Return the data stored under a step's id, if any."""
        return self.state.data.get(step_id)
