"""Shared test fixtures for litestar-flows test suite."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import pytest

if TYPE_CHECKING:
    from litestar_flows.core.definition import Flow
    from litestar_flows.core.events import FlowEvent
    from litestar_flows.engine.persistence import InMemoryFlowStatePersistence
    from litestar_flows.engine.registry import FlowRegistry
    from litestar_flows.engine.system import FlowSystem


class EventRecorder:
    """Collects every event published on a bus."""

    def __init__(self) -> None:
        self.events: list[FlowEvent] = []

    def __call__(self, event: FlowEvent) -> None:
        self.events.append(event)

    @property
    def names(self) -> list[str]:
        return [str(event.event_type) for event in self.events]

    def clear(self) -> None:
        self.events.clear()


@pytest.fixture
def flow_registry() -> FlowRegistry:
    """Create an empty flow registry."""
    from litestar_flows.engine.registry import FlowRegistry

    return FlowRegistry()


@pytest.fixture
def flow_system(flow_registry: FlowRegistry) -> FlowSystem:
    """Create a flow system with default configuration."""
    from litestar_flows.engine.system import FlowSystem

    return FlowSystem(registry=flow_registry)


@pytest.fixture
def state_persistence() -> InMemoryFlowStatePersistence:
    from litestar_flows.engine.persistence import InMemoryFlowStatePersistence

    return InMemoryFlowStatePersistence()


@pytest.fixture
def recorder(flow_system: FlowSystem) -> EventRecorder:
    """Record every event published by ``flow_system``."""
    recorder = EventRecorder()
    flow_system.on("*", recorder)
    return recorder


@pytest.fixture
def linear_flow() -> Flow:
    """Three sequential steps without conditions or branches.

    Returns:
        Flow with steps step1, step2 and step3
    """
    from litestar_flows.core.definition import Flow, FlowStep

    return Flow(
        id="linear",
        name="Linear",
        steps=[
            FlowStep(id="step1", title="Step 1", order=0),
            FlowStep(id="step2", title="Step 2", order=1),
            FlowStep(id="step3", title="Step 3", order=2),
        ],
    )


@pytest.fixture
def conditional_flow() -> Flow:
    """Step 2 is only visible when ``wants_extra`` is true."""
    from litestar_flows.core.definition import ConditionalRule, Flow, FlowStep
    from litestar_flows.core.types import ConditionalOperator

    return Flow(
        id="conditional",
        steps=[
            FlowStep(id="step1"),
            FlowStep(id="step2", condition=ConditionalRule("wants_extra", ConditionalOperator.EQUALS, True)),
            FlowStep(id="step3"),
        ],
    )


@pytest.fixture
def branching_flow() -> Flow:
    """Step 1 branches to step 3 when ``skip`` is true.

    Returns:
        Flow with a single priority-1 field branch
    """
    from litestar_flows.core.definition import BranchCondition, ConditionalRule, Flow, FlowBranch, FlowStep

    return Flow(
        id="branching",
        steps=[FlowStep(id="step1"), FlowStep(id="step2"), FlowStep(id="step3")],
        branches=[
            FlowBranch(
                id="skip-ahead",
                from_step_id="step1",
                condition=BranchCondition.from_rule(ConditionalRule("skip", value=True)),
                target_step_id="step3",
                priority=1,
            )
        ],
    )


# Pytest configuration
def pytest_configure(config: Any) -> None:
    """Configure pytest with custom markers.

    Args:
        config: Pytest config object
    """
    config.addinivalue_line("markers", "unit: Unit tests (fast, isolated)")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "e2e: End-to-end tests")
