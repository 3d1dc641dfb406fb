"""Flow engine implementations.

This module provides condition and branch evaluation, the flow registry, the
live instance store, state persistence and the ``FlowSystem`` that drives
instances from step to step.
"""

from __future__ import annotations

from litestar_flows.engine.branches import evaluate_branch, resolve_branch_target, resolve_next_step
from litestar_flows.engine.conditions import evaluate_condition, is_step_visible, strict_equals
from litestar_flows.engine.expressions import evaluate_expression, safe_eval, safe_eval_bool
from litestar_flows.engine.persistence import FlowStatePersistence, InMemoryFlowStatePersistence
from litestar_flows.engine.registry import FlowRegistry
from litestar_flows.engine.store import FlowInstanceStore
from litestar_flows.engine.system import FlowSystem

__all__ = [
    "FlowInstanceStore",
    "FlowRegistry",
    "FlowStatePersistence",
    "FlowSystem",
    "InMemoryFlowStatePersistence",
    "evaluate_branch",
    "evaluate_condition",
    "evaluate_expression",
    "is_step_visible",
    "resolve_branch_target",
    "resolve_next_step",
    "safe_eval",
    "safe_eval_bool",
    "strict_equals",
]
