"""Structured logging for the execution engine.

Processors log through structlog, services through stdlib ``logging``; both
end up in one handler so a step's lines and the service lines around it share
a format. Lines emitted while a step runs carry ``instance_id``, ``step_id``
and ``step_type`` from :func:`step_log_context`.
"""

import logging
import sys
from contextlib import contextmanager
from typing import Any, Iterator, Optional

import structlog
from app.config import Settings, get_settings

QUIET_LOGGERS = ("httpx", "httpcore", "aiosqlite")


@contextmanager
def step_log_context(instance_id: str, step_id: Optional[str], **extra: Any) -> Iterator[None]:
    """Bind instance and step identifiers to every log line inside the block.

    Bindings live in structlog contextvars, so they reach stdlib records as
    well once :func:`setup_logging` has run. The previous bindings are
    restored on exit.
    """
    with structlog.contextvars.bound_contextvars(instance_id=instance_id, step_id=step_id, **extra):
        yield


def _engine_metadata(settings: Settings):
    def add_engine_metadata(logger, method_name, event_dict):
        event_dict.setdefault("engine", settings.APP_NAME)
        event_dict.setdefault("environment", settings.ENVIRONMENT)
        return event_dict

    return add_engine_metadata


def setup_logging(settings: Optional[Settings] = None) -> None:
    """Install the engine's log pipeline on the root logger.

    ``LOG_FORMAT=text`` (or a development environment) renders colored
    console lines; anything else renders one JSON object per line.
    """
    settings = settings or get_settings()

    shared_processors: list = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        _engine_metadata(settings),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if settings.is_development or settings.LOG_FORMAT == "text":
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())
    else:
        renderer = structlog.processors.JSONRenderer()

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
        foreign_pre_chain=shared_processors,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))

    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.DEBUG if settings.SQLALCHEMY_ECHO else logging.WARNING
    )
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
