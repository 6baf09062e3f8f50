"""Logging helpers built on loguru, rendered through rich."""

import time
from functools import wraps
from typing import Any, Callable

from loguru import logger
from rich.logging import RichHandler

from claude_sync.environment import SyncSettings, get_settings

_configured = False


def configure_logging(settings: SyncSettings | None = None, log_file=None, force: bool = False) -> None:
    """Route loguru output through a RichHandler at the configured level.

    In debug mode a rotating file sink is added as well.

    Args:
        settings: Settings to read the level from. Defaults to the environment
        log_file: Log file used in debug mode when settings do not name one
        force: Reconfigure even if logging was already set up
    """
    global _configured
    if _configured and not force:
        return

    settings = settings or get_settings()
    logger.remove()
    logger.add(
        RichHandler(rich_tracebacks=True, show_path=False, markup=False),
        level=settings.log_level,
        format="{message}",
        backtrace=False,
        diagnose=False,
    )
    if settings.invalid_log_level:
        logger.warning(f"Invalid log level: {settings.invalid_log_level}. Using INFO.")

    if settings.CLAUDE_SYNC_DEBUG:
        target = settings.CLAUDE_SYNC_LOG_FILE or log_file
        if target is not None:
            try:
                logger.add(
                    str(target),
                    level="DEBUG",
                    rotation="5 MB",
                    retention=3,
                    format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {extra[component]} - {message}",
                    enqueue=True,
                )
            except OSError as error:
                logger.error(f"Failed to set up file logging: {error}")
    _configured = True


def get_logger(name: str):
    """Get a loguru logger bound to a component name."""
    return logger.bind(component=name)


# Components that never called get_logger still format cleanly in the file sink.
logger.configure(extra={"component": "claude_sync"})


class LogContext:
    """Log the start, end and duration of an operation at DEBUG level."""

    def __init__(self, log, operation: str):
        self.log = log
        self.operation = operation
        self._start = 0.0

    def __enter__(self) -> "LogContext":
        self._start = time.perf_counter()
        self.log.debug(f"Starting {self.operation}")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        elapsed = time.perf_counter() - self._start
        if exc_type is not None:
            self.log.debug(f"{self.operation} failed after {elapsed:.3f}s: {exc_val}")
            return False
        self.log.debug(f"Finished {self.operation} in {elapsed:.3f}s")
        return False


def log_execution(log=None) -> Callable:
    """Decorator logging entry and exit of the wrapped function at DEBUG level."""

    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            target = log or logger
            target.debug(f"Calling {func.__qualname__}")
            result = func(*args, **kwargs)
            target.debug(f"{func.__qualname__} returned")
            return result

        return wrapper

    return decorator

