"""Structured logging foundation for digitbot.

Provides JSON logging (prod) or colored console (dev) via structlog.
Includes an audit trail logger for trade lifecycle events.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import Any, cast

import structlog


def _configure_structlog() -> None:
    """Configure structlog based on DIGITBOT_ENV / DIGITBOT_LOG_LEVEL."""
    env = os.environ.get("DIGITBOT_ENV", "development")
    log_level_name = os.environ.get("DIGITBOT_LOG_LEVEL", "INFO").upper()
    level = logging.getLevelNamesMapping().get(log_level_name, logging.INFO)

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if env == "production":
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


_CONFIGURED = False


def get_logger(name: str) -> structlog.typing.FilteringBoundLogger:
    """Get a named logger instance.

    Args:
        name: Logger name (typically module __name__).

    Returns:
        Configured structlog bound logger.
    """
    global _CONFIGURED
    if not _CONFIGURED:
        _configure_structlog()
        _CONFIGURED = True

    return cast(structlog.typing.FilteringBoundLogger, structlog.get_logger(name))


def get_audit_logger() -> structlog.typing.FilteringBoundLogger:
    """Get the audit trail logger for trade submissions and settlements.

    All audit events are logged with event_type for downstream filtering.
    """
    return get_logger("digitbot.audit")


def log_trade_event(
    action: str,
    trade_id: int,
    **kwargs: Any,
) -> None:
    """Log a trade lifecycle event to the audit trail.

    Args:
        action: Event type (submit, proposal, purchase, settle, abandon).
        trade_id: Local monotonic trade id.
        **kwargs: Additional context (stake, contract_type, profit, reason, etc).
    """
    logger = get_audit_logger()
    logger.info(
        "trade_event",
        event_type="audit",
        action=action,
        trade_id=trade_id,
        **kwargs,
    )
