"""
Structured logging configuration using structlog.

Every line carries the app name and environment. HTTP requests bind a
request_id (see api.middleware); background sweeps bind the sweep name and
pass number through sweep_context(), so a reclaimed hold or a refunded
deposit can be traced back to the pass that produced it.
JSON in production, console rendering elsewhere.
"""

import logging
import sys
from contextlib import contextmanager
from typing import Iterator

import structlog

from reservation_engine.core.config import Settings, get_settings

_HANDLER_NAME = "reservation_engine"

QUIET_LOGGERS = ("uvicorn.access", "sqlalchemy.engine", "aiosqlite", "asyncio")


def _app_context(settings: Settings):
    def add_app_context(logger, method_name, event_dict):
        event_dict.setdefault("app", settings.APP_NAME)
        event_dict.setdefault("env", settings.ENVIRONMENT)
        return event_dict

    return add_app_context


def setup_logging(settings: Settings | None = None) -> None:
    """Configure structlog and the root handler. Safe to call more than once."""
    settings = settings or get_settings()
    production = settings.ENVIRONMENT == "production"

    processors = [
        structlog.contextvars.merge_contextvars,
        _app_context(settings),
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]
    if production:
        processors.append(structlog.processors.format_exc_info)

    structlog.configure(
        processors=[*processors, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    renderer = (
        structlog.processors.JSONRenderer()
        if production
        else structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())
    )
    handler = logging.StreamHandler(sys.stdout)
    handler.set_name(_HANDLER_NAME)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer]
        )
    )

    root_logger = logging.getLogger()
    # Replace our handler on re-run (uvicorn reload, repeated lifespans in tests).
    for existing in [h for h in root_logger.handlers if h.get_name() == _HANDLER_NAME]:
        root_logger.removeHandler(existing)
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


@contextmanager
def sweep_context(sweep: str, pass_number: int) -> Iterator[None]:
    """Bind sweep identity into every log line emitted during one pass."""
    with structlog.contextvars.bound_contextvars(sweep=sweep, sweep_pass=pass_number):
        yield


def get_logger(name: str = __name__) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
