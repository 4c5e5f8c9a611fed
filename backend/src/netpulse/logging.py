"""Structured logging for NetPulse.

Every event is a structlog event dict rendered as JSON (default) or as
colored console lines (LOG_FORMAT=console). Two context variables are merged
into events when set:

- ``correlation_id``: the HTTP request that caused the event
- ``run_id``: the speed test run that caused the event

A run started from POST /api/run executes in a task that inherits the
request's context, so its probe, lookup and storage events carry both IDs.
"""

import logging
import sys
import uuid
from contextvars import ContextVar, Token
from typing import Any

import structlog
from structlog.typing import EventDict, WrappedLogger

from .config import get_settings

correlation_id_ctx: ContextVar[str | None] = ContextVar("correlation_id", default=None)
run_id_ctx: ContextVar[int | None] = ContextVar("run_id", default=None)

# Outbound probe and lookup requests log every call at INFO
QUIET_LOGGERS = ("uvicorn.access", "httpx", "httpcore", "aiosqlite")


def get_correlation_id() -> str | None:
    return correlation_id_ctx.get()


def set_correlation_id(cid: str | None = None) -> str:
    """Use the caller's ID, or a short random one."""
    if cid is None:
        cid = uuid.uuid4().hex[:8]
    correlation_id_ctx.set(cid)
    return cid


def get_run_id() -> int | None:
    return run_id_ctx.get()


def bind_run_id(run_id: int) -> Token:
    """Tag events with a run number until the returned token is reset."""
    return run_id_ctx.set(run_id)


def reset_run_id(token: Token) -> None:
    run_id_ctx.reset(token)


def add_request_context(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Add correlation_id and run_id to events where they are known."""
    if get_settings().logging.correlation_id:
        cid = correlation_id_ctx.get()
        if cid is not None:
            event_dict.setdefault("correlation_id", cid)
    run_id = run_id_ctx.get()
    if run_id is not None:
        event_dict.setdefault("run_id", run_id)
    return event_dict


def add_app_context(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Stamp the app name and version (JSON output only)."""
    settings = get_settings()
    event_dict.setdefault("app", settings.app_name)
    event_dict.setdefault("version", settings.version)
    return event_dict


def build_processors(fmt: str) -> list[Any]:
    """Processor chain for the given LOG_FORMAT."""
    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        add_request_context,
    ]
    if fmt == "json":
        return processors + [
            add_app_context,
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer(),
        ]
    return processors + [
        structlog.processors.format_exc_info,
        structlog.dev.ConsoleRenderer(colors=True),
    ]


def configure_logging() -> None:
    """Configure structlog and route standard-library logging to stdout."""
    settings = get_settings()
    level = logging.getLevelName(settings.logging.level)

    structlog.configure(
        processors=build_processors(settings.logging.format),
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.BoundLogger:
    """Get a structured logger, optionally bound to a logger name."""
    logger = structlog.get_logger()
    if name:
        logger = logger.bind(logger_name=name)
    return logger
