"""Structured logging setup for litestar-flows.

The library logs through ``structlog`` bound loggers that sit on top of the
standard library ``logging`` module, so host applications keep full control
over handlers and levels. ``configure_logging`` is an optional convenience for
applications (and the Litestar plugin) that do not configure structlog
themselves.
"""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog

__all__ = ["configure_logging", "get_logger"]

_LOGGER_NAME = "litestar_flows"


def configure_logging(level: int | str = logging.INFO, json_logs: bool = False) -> None:
    """Configure structlog and the ``litestar_flows`` stdlib logger.

    Args:
        level: Log level for the ``litestar_flows`` logger.
        json_logs: Render JSON lines instead of the developer console format.
    """
    shared_processors: list[Any] = [
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    final_processor: Any
    if json_logs:
        final_processor = structlog.processors.JSONRenderer()
    else:
        final_processor = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processor=final_processor,
        foreign_pre_chain=shared_processors,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    logger = logging.getLogger(_LOGGER_NAME)
    logger.handlers = [handler]
    logger.setLevel(level)
    logger.propagate = False


def get_logger(name: str) -> Any:
    """Return a structlog logger bound to ``name``.

    Args:
        name: Usually the calling module's ``__name__``.

    Returns:
        A lazily-bound structlog logger.
    """
    return structlog.get_logger(name)
