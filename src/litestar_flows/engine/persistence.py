"""State persistence for flow instances.

Persistence stores the plain-dict form of ``FlowState`` (see
``FlowState.to_dict``) keyed by instance id. The engine only needs the
three operations of :class:`FlowStatePersistence`; any storage backend can be
plugged in by implementing them.
"""

from __future__ import annotations

import copy
from typing import Any, Protocol, runtime_checkable

__all__ = ["FlowStatePersistence", "InMemoryFlowStatePersistence"]


@runtime_checkable
class FlowStatePersistence(Protocol):
    """Protocol for storing serialized flow state."""

    async def save_state(self, instance_id: str, state: dict[str, Any]) -> None:
        """Store ``state`` under ``instance_id``, replacing any previous value."""
        ...

    async def load_state(self, instance_id: str) -> dict[str, Any] | None:
        """Return the state stored under ``instance_id``, or None."""
        ...

    async def delete_state(self, instance_id: str) -> None:
        """Forget the state stored under ``instance_id``; unknown ids are ignored."""
        ...


class InMemoryFlowStatePersistence:
    """Dict-backed persistence, suitable for tests and single-process apps.

    Stored states are deep-copied on the way in and out.
    """

    def __init__(self) -> None:
        self._states: dict[str, dict[str, Any]] = {}

    async def save_state(self, instance_id: str, state: dict[str, Any]) -> None:
        self._states[instance_id] = copy.deepcopy(state)

    async def load_state(self, instance_id: str) -> dict[str, Any] | None:
        state = self._states.get(instance_id)
        return copy.deepcopy(state) if state is not None else None

    async def delete_state(self, instance_id: str) -> None:
        self._states.pop(instance_id, None)

    def __contains__(self, instance_id: object) -> bool:
        return instance_id in self._states
