"""structlog setup for the alert engine.

Console output goes to stdout; when file logging is on, records are also
written as JSON lines to a size-rotated file under the data directory.
"""

import logging
import logging.handlers
import sys
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Optional

import structlog
from structlog.types import Processor

_SIZE_UNITS = {"KB": 1024, "MB": 1024**2, "GB": 1024**3}


def setup_logging(
    level: str = "INFO",
    format_type: str = "structured",
    file_enabled: bool = True,
    file_path: str = "data/alertdesk.log",
    max_file_size: str = "10MB",
    backup_count: int = 5,
) -> None:
    """
    Configure structlog and the stdlib root logger.

    Args:
        level: Minimum level name, e.g. "INFO"
        format_type: "structured" for JSON/console key-values, anything else
            for colored plain output
        file_enabled: Also write to a rotating log file
        file_path: Location of the rotating log file
        max_file_size: Rotation threshold such as "10MB"
        backup_count: Rotated files kept on disk
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=numeric_level)

    chain = _base_processors()
    chain.append(_renderer(format_type, file_enabled))

    structlog.configure(
        processors=chain,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        context_class=dict,
        cache_logger_on_first_use=True,
    )

    if file_enabled:
        _attach_rotating_file(Path(file_path), max_file_size, backup_count, numeric_level)


def _base_processors() -> list[Processor]:
    return [
        # batch_id / alert_id bound via bound_context()
        structlog.contextvars.merge_contextvars,
        structlog.processors.TimeStamper(fmt="ISO"),
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]


def _renderer(format_type: str, file_enabled: bool) -> Processor:
    if format_type != "structured":
        return structlog.dev.ConsoleRenderer(colors=True)
    if file_enabled:
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer()


def _attach_rotating_file(
    log_file: Path, max_file_size: str, backup_count: int, level: int
) -> None:
    log_file.parent.mkdir(parents=True, exist_ok=True)

    handler = logging.handlers.RotatingFileHandler(
        filename=log_file,
        maxBytes=parse_file_size(max_file_size),
        backupCount=backup_count,
    )
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter("%(message)s"))
    logging.getLogger().addHandler(handler)


def parse_file_size(size_str: str) -> int:
    """Convert "512KB", "10MB" or "1GB" to bytes; bare digits are bytes."""
    text = size_str.strip().upper()
    for suffix, multiplier in _SIZE_UNITS.items():
        if text.endswith(suffix):
            return int(text[: -len(suffix)]) * multiplier
    return int(text)


def get_logger(name: Optional[str] = None) -> structlog.stdlib.BoundLogger:
    """Return a structlog logger, optionally named after a component."""
    return structlog.get_logger(name)


@contextmanager
def bound_context(**kwargs: Any) -> Iterator[None]:
    """
    Bind key/value pairs to every log line emitted inside the block.

    Values live in contextvars, so concurrent asyncio tasks started inside
    the block inherit them without leaking into sibling tasks.
    """
    tokens = structlog.contextvars.bind_contextvars(**kwargs)
    try:
        yield
    finally:
        structlog.contextvars.reset_contextvars(**tokens)


def log_performance(operation: str, duration_ms: float, **context: Any) -> None:
    """Emit a timing record on the "performance" logger."""
    get_logger("performance").info(
        "Operation timed", operation=operation, duration_ms=duration_ms, **context
    )


def log_error(error: Exception, **context: Any) -> None:
    """
    Record an exception on the "error" logger with its traceback.

    Used for failures that are contained (a channel adapter blowing up,
    a scheduler job raising) rather than propagated to the caller.
    """
    get_logger("error").error(
        "Unhandled failure",
        error_type=type(error).__name__,
        error_message=str(error),
        exc_info=error,
        **context,
    )


def log_audit_event(event: str, user_id: Optional[str] = None, **context: Any) -> None:
    """Record a user-visible state change on the "audit" logger."""
    get_logger("audit").info("Audit", audit_event=event, user_id=user_id, **context)
