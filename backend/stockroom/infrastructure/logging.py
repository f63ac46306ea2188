import logging
import sys
from contextlib import contextmanager
from typing import Any, Iterator

import structlog
from structlog.types import Processor

def setup_logging(level: int | str = logging.INFO, *, json_logs: bool | None = None) -> None:
    """Configures structured logging with structlog.

    ``json_logs`` defaults to JSON whenever stderr is not a terminal.
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=level,
    )

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.processors.add_log_level,
        structlog.processors.format_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if json_logs is None:
        json_logs = not sys.stderr.isatty()

    if json_logs:
        processors = shared_processors + [
            structlog.processors.dict_tracebacks,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = shared_processors + [
            structlog.dev.ConsoleRenderer()
        ]

    structlog.configure(
        processors=processors,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

def get_logger(name: str | None = None) -> Any:
    """Returns a structlog logger."""
    return structlog.get_logger(name)

@contextmanager
def correlation_scope(correlation_id: str, **extra: Any) -> Iterator[None]:
    """Binds ``correlation_id`` to every log line emitted inside the block."""
    with structlog.contextvars.bound_contextvars(correlation_id=correlation_id, **extra):
        yield
