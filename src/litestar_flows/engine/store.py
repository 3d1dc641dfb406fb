"""In-memory store of live flow instances."""

from __future__ import annotations

from typing import TYPE_CHECKING

from litestar_flows.exceptions import FlowInstanceNotFoundError

if TYPE_CHECKING:
    from litestar_flows.core.state import FlowInstance

__all__ = ["FlowInstanceStore"]


class FlowInstanceStore:
    """Tracks the instances that have started and not yet completed or been cancelled.

    Attributes:
        _instances: Map of instance ids to instances, in start order.
    """

    def __init__(self) -> None:
        self._instances: dict[str, FlowInstance] = {}

    def add(self, instance: FlowInstance) -> None:
        self._instances[instance.id] = instance

    def get(self, instance_id: str) -> FlowInstance | None:
        """Return the instance with ``instance_id``, or None if it is not live."""
        return self._instances.get(instance_id)

    def require(self, instance_id: str) -> FlowInstance:
        """Return the instance with ``instance_id``.

        Raises:
            FlowInstanceNotFoundError: If the instance is not live.
        """
        instance = self._instances.get(instance_id)
        if instance is None:
            raise FlowInstanceNotFoundError(instance_id)
        return instance

    def remove(self, instance_id: str) -> FlowInstance | None:
        """Stop tracking an instance.

        Returns:
            The removed instance, or None if it was not live.
        """
        return self._instances.pop(instance_id, None)

    def all(self) -> list[FlowInstance]:
        return list(self._instances.values())

    def __contains__(self, instance_id: object) -> bool:
        return instance_id in self._instances

    def __len__(self) -> int:
        return len(self._instances)
