"""
Centralized Logging Configuration for Goal Forge

Structured logging through structlog. Every module does:

    from logging_config import get_logger
    logger = get_logger(__name__)
    logger.info("goal_created", goal_id=goal.id, title=goal.title)

Request-scoped fields (request id, owner) are bound once by the HTTP
middleware and merged into every event logged while the request runs.

Author: Goal Forge Core Team
"""

import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import structlog


def _shared_processors() -> list:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]


def setup_logging(
    level: str = "INFO",
    log_file: str | None = None,
    json_logs: bool = False
) -> None:
    """
    Configure logging for the whole service.

    Args:
        level: DEBUG, INFO, WARNING, ERROR or CRITICAL
        log_file: also write to this file when set
        json_logs: one JSON object per line (production)
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    renderer = (
        structlog.processors.JSONRenderer()
        if json_logs
        else structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())
    )

    structlog.configure(
        processors=_shared_processors() + [renderer],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(format="%(message)s", level=numeric_level, handlers=handlers, force=True)

    # uvicorn's access log duplicates http_request
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> Any:
    """Get a structlog logger bound to ``name``."""
    return structlog.get_logger(name)


def bind_request_context(**fields) -> None:
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(**fields)


def clear_request_context() -> None:
    structlog.contextvars.clear_contextvars()


# Convenience functions for common events
def log_session_transition(
    session_id: str,
    owner: str,
    from_state: str,
    to_state: str,
    reason: str
) -> None:
    """Log conversation state transition with structured data"""
    get_logger("session_transition").info(
        "session_transition",
        session_id=session_id,
        owner=owner,
        from_state=from_state,
        to_state=to_state,
        reason=reason,
        timestamp=datetime.now(timezone.utc).isoformat()
    )


def log_error(
    error: Exception,
    context: dict | None = None,
    level: str = "ERROR"
) -> None:
    """Log an error with its context and stack trace"""
    logger = get_logger("error_handler")
    log_func = getattr(logger, level.lower(), logger.error)

    fields = {
        "error_type": type(error).__name__,
        "error_message": str(error),
    }
    fields.update(context or {})

    log_func("error_occurred", exc_info=error, **fields)


def http_request_summary(
    method: str,
    path: str,
    status_code: int,
    duration_ms: float
) -> None:
    get_logger("http").info(
        "http_request",
        method=method,
        path=path,
        status_code=status_code,
        duration_ms=duration_ms
    )
