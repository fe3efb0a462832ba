"""Structured logging for the fleet snapshot service, built on structlog.

Both structlog loggers and plain stdlib loggers (httpx, aiohttp,
apscheduler) end up in one stdout handler, so every line shares the same
timestamp, level and context fields.
"""

import logging
import sys
import uuid
from collections.abc import Iterator
from contextlib import contextmanager

import structlog
from structlog.types import Processor

# Third-party loggers that are too chatty at INFO
NOISY_LOGGERS = ("httpx", "httpcore", "apscheduler", "aiohttp.access")


def _context_chain() -> list[Processor]:
    # Applied to structlog events and to foreign stdlib records alike
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.ExtraAdder(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]


def _render_chain(log_format: str) -> list[Processor]:
    if log_format.lower() == "json":
        return [structlog.processors.dict_tracebacks, structlog.processors.JSONRenderer()]
    return [structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())]


def _resolve_level(log_level: str) -> int:
    level = logging.getLevelName(log_level.upper())
    return level if isinstance(level, int) else logging.INFO


def configure_logging(
    log_level: str = "INFO",
    log_format: str = "json",
) -> None:
    """Install the stdout handler and configure structlog to feed it.

    Args:
        log_level: Logging level name; unknown names fall back to INFO.
        log_format: 'json' for one object per line, anything else for console output.
    """
    context_chain = _context_chain()

    structlog.configure(
        processors=[
            *context_chain,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=context_chain,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                *_render_chain(log_format),
            ],
        )
    )
    logging.basicConfig(handlers=[handler], level=_resolve_level(log_level), force=True)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Return a structlog logger bound to ``name``."""
    return structlog.stdlib.get_logger(name)


@contextmanager
def pass_context(trigger: str) -> Iterator[str]:
    """Tag every log line emitted during one aggregation pass.

    Args:
        trigger: What started the pass (e.g. "http", "cli").

    Yields:
        The generated pass ID.
    """
    pass_id = uuid.uuid4().hex[:12]
    with structlog.contextvars.bound_contextvars(pass_id=pass_id, trigger=trigger):
        yield pass_id
