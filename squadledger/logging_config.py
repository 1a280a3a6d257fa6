"""structlog setup for the engine, plus per-request context binding."""

import logging
import sys
from typing import Any

import structlog

SERVICE_NAME = "squadledger"

REQUEST_CONTEXT_KEYS = ("request_id", "principal", "path", "method")

# Libraries that log every statement or request at INFO
_CHATTY_LOGGERS = ("sqlalchemy.engine", "aiosqlite", "uvicorn.access")


def _renderer(json_format: bool) -> list[structlog.types.Processor]:
    if json_format:
        return [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    return [structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())]


def configure_logging(level: str = "INFO", json_format: bool = True) -> None:
    """Route engine logs to stdout as JSON lines, or as console text when ``json_format`` is off."""
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        raise ValueError(f"Unknown log level '{level}'")

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=numeric_level)
    for name in _CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric_level, logging.WARNING))

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            *_renderer(json_format),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(service=SERVICE_NAME)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def bind_request_context(request_id: str, principal: str | None = None, **extra: Any) -> None:
    """Attach request fields to every log line emitted while the request runs."""
    if principal:
        extra["principal"] = principal
    structlog.contextvars.bind_contextvars(request_id=request_id, **extra)


def clear_request_context() -> None:
    # Leaves the service binding in place
    structlog.contextvars.unbind_contextvars(*REQUEST_CONTEXT_KEYS)
