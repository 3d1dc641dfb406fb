"""Configuration for the flow engine.

This module provides the behavioural switches of :class:`~litestar_flows.engine.system.FlowSystem`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

__all__ = ["FlowEngineConfig"]


@dataclass
class FlowEngineConfig:
    """Behavioural configuration for a :class:`~litestar_flows.engine.system.FlowSystem`.

    Attributes:
        block_navigation_when_paused: Refuse ``next_step``, ``previous_step``,
            ``go_to_step`` and ``skip_step`` while an instance is paused.
        serialize_navigation: Hold a per-instance lock for the whole duration of
            a navigation call so concurrent calls cannot interleave at hook
            suspension points.
        validate_on_next: Run the current step's validators before ``next_step``
            and refuse to advance when they report errors.
        rollback_on_hook_error: Restore the instance position when a lifecycle
            hook raises, and re-raise as ``StepHookError``. When false the hook's
            exception propagates untouched and no rollback is performed.
        max_expression_length: Upper bound on branch expression source length.
        log_level: Level used by ``configure_logging`` when the plugin sets up logging.
        json_logs: Render JSON log lines instead of the console format.

    Example:
        >>> from litestar_flows.config import FlowEngineConfig
        >>> config = FlowEngineConfig(block_navigation_when_paused=False)
    """

    block_navigation_when_paused: bool = True
    serialize_navigation: bool = True
    validate_on_next: bool = True
    rollback_on_hook_error: bool = True
    max_expression_length: int = 1000
    log_level: int | str = logging.INFO
    json_logs: bool = False
