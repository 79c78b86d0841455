"""Structured logging setup using structlog."""

from __future__ import annotations

from contextlib import contextmanager
import logging
from typing import Any, Iterator

import structlog

from agent_coordination.core.config import get_settings


_CONFIGURED = False


def _add_default_context(
    logger: Any,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    del logger, method_name
    event_dict.setdefault("tenant_id", None)
    event_dict.setdefault("resource_id", None)
    return event_dict


def configure_logging() -> None:
    """Initialize structlog once for JSON-formatted logs."""

    global _CONFIGURED
    if _CONFIGURED:
        return

    settings = get_settings()
    level = getattr(logging, settings.log_level.upper(), logging.INFO)

    logging.basicConfig(level=level, format="%(message)s")

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            _add_default_context,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.JSONRenderer(),
        ],
        logger_factory=structlog.PrintLoggerFactory(),
        wrapper_class=structlog.make_filtering_bound_logger(level),
        cache_logger_on_first_use=True,
    )

    _CONFIGURED = True


def get_logger(name: str | None = None) -> structlog.BoundLogger:
    configure_logging()
    return structlog.get_logger(name)


_LOCK_CONTEXT_KEYS = ("tenant_id", "resource_id")


@contextmanager
def lock_context(tenant_id: str, resource_id: str) -> Iterator[None]:
    """Bind tenant_id/resource_id for the block and restore the outer values on exit."""

    bound = structlog.contextvars.get_contextvars()
    previous = {key: bound[key] for key in _LOCK_CONTEXT_KEYS if key in bound}
    structlog.contextvars.bind_contextvars(
        tenant_id=tenant_id,
        resource_id=resource_id,
    )
    try:
        yield
    finally:
        structlog.contextvars.unbind_contextvars(*_LOCK_CONTEXT_KEYS)
        if previous:
            structlog.contextvars.bind_contextvars(**previous)
