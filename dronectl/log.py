"""
Logging support for dronectl.

Every module logs through a ``LogComponent`` logger below the ``dronectl``
root. ``configure_logging`` installs a console handler and, when asked, a
rotating log file. While the curses view owns the screen, console output is
redirected to a ``CallbackHandler`` that feeds the view's message line.
"""
from __future__ import annotations

import logging
import logging.handlers
import sys
import time
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from functools import wraps
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, TypeVar, Union

F = TypeVar("F", bound=Callable[..., Any])


class LogLevel(Enum):
    """Levels selectable from the command line."""
    DEBUG = logging.DEBUG
    INFO = logging.INFO
    WARNING = logging.WARNING
    ERROR = logging.ERROR


class LogComponent(Enum):
    """One logger per layer of the tool."""
    ROOT = "dronectl"
    TRANSPORT = "dronectl.transport"
    LINK = "dronectl.link"
    DISCOVERY = "dronectl.discovery"
    SESSION = "dronectl.session"
    COMMAND = "dronectl.command"
    TELEMETRY = "dronectl.telemetry"
    VIEW = "dronectl.view"
    APP = "dronectl.app"
    SIMULATION = "dronectl.simulation"


# ============================================================================
# Formatters and Handlers
# ============================================================================

class ColoredFormatter(logging.Formatter):
    """Console formatter that colors each line by level on a TTY."""

    COLORS = {
        logging.DEBUG: "\033[36m",     # Cyan
        logging.INFO: "\033[32m",      # Green
        logging.WARNING: "\033[33m",   # Yellow
        logging.ERROR: "\033[31m",     # Red
        logging.CRITICAL: "\033[35m",  # Magenta
    }
    RESET = "\033[0m"
    BOLD = "\033[1m"

    def __init__(self, fmt: Optional[str] = None, datefmt: Optional[str] = None):
        super().__init__(fmt, datefmt)
        self.use_colors = sys.stdout.isatty()

    def format(self, record: logging.LogRecord) -> str:
        text = super().format(record)
        if not self.use_colors:
            return text
        color = self.COLORS.get(record.levelno, "")
        if record.levelno >= logging.WARNING:
            return f"{color}{self.BOLD}{text}{self.RESET}"
        return f"{color}{text}{self.RESET}"


class CallbackHandler(logging.Handler):
    """
    Handler that forwards formatted records to callbacks.

    Used by the live view to show warnings in its message line instead of
    writing over the curses screen.
    """

    def __init__(self, level: int = logging.WARNING):
        super().__init__(level)
        self._callbacks: List[Callable[[logging.LogRecord, str], None]] = []

    def emit(self, record: logging.LogRecord) -> None:
        try:
            text = self.format(record)
        except Exception:
            self.handleError(record)
            return
        for callback in list(self._callbacks):
            callback(record, text)

    def add_callback(self, callback: Callable[[logging.LogRecord, str], None]) -> None:
        self._callbacks.append(callback)

    def remove_callback(self, callback: Callable[[logging.LogRecord, str], None]) -> None:
        if callback in self._callbacks:
            self._callbacks.remove(callback)


# ============================================================================
# Manager
# ============================================================================

@dataclass
class LoggingConfig:
    """Console and log file settings for one run."""
    level: LogLevel = LogLevel.INFO
    format: str = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
    date_format: str = "%Y-%m-%d %H:%M:%S"

    console_enabled: bool = True
    console_colored: bool = True

    # The file always records DEBUG, whatever the console shows
    file_path: Optional[str] = None
    file_max_bytes: int = 10 * 1024 * 1024  # 10MB
    file_backup_count: int = 5


class LoggingManager:
    """
    Owns the handlers attached to the ``dronectl`` root logger.

    A single instance exists per process so the live view can swap the
    console handler that the CLI installed.
    """

    _instance: Optional["LoggingManager"] = None
    _initialized: bool = False

    def __new__(cls) -> "LoggingManager":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self):
        if self._initialized:
            return
        self._handlers: Dict[str, logging.Handler] = {}
        self._root_logger = logging.getLogger(LogComponent.ROOT.value)
        self._initialized = True

    def configure(self, config: LoggingConfig) -> None:
        """Replace all installed handlers with the ones ``config`` asks for."""
        for handler in list(self._handlers.values()):
            self._root_logger.removeHandler(handler)
            handler.close()
        self._handlers.clear()

        # Handlers filter on their own level
        self._root_logger.setLevel(
            logging.DEBUG if config.file_path else config.level.value
        )

        if config.console_enabled:
            console_handler = logging.StreamHandler(sys.stdout)
            console_handler.setLevel(config.level.value)
            if config.console_colored:
                formatter: logging.Formatter = ColoredFormatter(config.format, config.date_format)
            else:
                formatter = logging.Formatter(config.format, config.date_format)
            console_handler.setFormatter(formatter)
            self.add_handler("console", console_handler)

        if config.file_path:
            Path(config.file_path).parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.handlers.RotatingFileHandler(
                config.file_path,
                maxBytes=config.file_max_bytes,
                backupCount=config.file_backup_count,
            )
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(logging.Formatter(config.format, config.date_format))
            self.add_handler("file", file_handler)

    def add_handler(self, name: str, handler: logging.Handler) -> None:
        if name in self._handlers:
            self._root_logger.removeHandler(self._handlers[name])
        self._root_logger.addHandler(handler)
        self._handlers[name] = handler

    def remove_handler(self, name: str) -> Optional[logging.Handler]:
        handler = self._handlers.pop(name, None)
        if handler is not None:
            self._root_logger.removeHandler(handler)
        return handler

    @contextmanager
    def redirect_console(self, handler: logging.Handler) -> Iterator[logging.Handler]:
        """Replace the console handler with ``handler`` for the duration of the block."""
        console = self.remove_handler("console")
        self.add_handler("redirect", handler)
        try:
            yield handler
        finally:
            self.remove_handler("redirect")
            if console is not None:
                self.add_handler("console", console)


def get_manager() -> LoggingManager:
    return LoggingManager()


def configure_logging(
    level: LogLevel = LogLevel.INFO,
    console: bool = True,
    colored: bool = True,
    file: Optional[str] = None,
) -> LoggingManager:
    """
    Configure the dronectl logging system.

    Args:
        level: Console log level
        console: Enable console logging
        colored: Use colored console output
        file: Path to a rotating log file recording DEBUG and above

    Example:
        >>> from dronectl.log import configure_logging, LogLevel
        >>> configure_logging(level=LogLevel.DEBUG, file="dronectl.log")
    """
    manager = get_manager()
    manager.configure(LoggingConfig(
        level=level,
        console_enabled=console,
        console_colored=colored,
        file_path=file,
    ))
    return manager


def get_logger(component: Union[LogComponent, str] = LogComponent.ROOT) -> logging.Logger:
    """
    Get a logger for a component.

    Example:
        >>> from dronectl.log import get_logger, LogComponent
        >>> logger = get_logger(LogComponent.SESSION)
        >>> logger.info("Session created")
    """
    if isinstance(component, LogComponent):
        return logging.getLogger(component.value)
    return logging.getLogger(component)


def log_timing(
    logger: Optional[logging.Logger] = None,
    level: int = logging.DEBUG,
) -> Callable[[F], F]:
    """Log how long each call of the decorated coroutine took."""
    def decorator(func: F) -> F:
        _logger = logger or logging.getLogger(getattr(func, "__module__", __name__))

        @wraps(func)
        async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
            start = time.perf_counter()
            try:
                return await func(*args, **kwargs)
            finally:
                elapsed_ms = (time.perf_counter() - start) * 1000
                _logger.log(level, f"{func.__name__} took {elapsed_ms:.2f}ms")

        return async_wrapper  # type: ignore

    return decorator


__all__ = [
    "LogLevel",
    "LogComponent",
    "ColoredFormatter",
    "CallbackHandler",
    "LoggingConfig",
    "LoggingManager",
    "get_manager",
    "configure_logging",
    "get_logger",
    "log_timing",
]
