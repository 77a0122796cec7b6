#!/usr/bin/env python3
"""Structured logging for planoverride.

This module wraps Python's logging module with:
- Structured context (key=value pairs appended to each message)
- Thread-local context stacks for per-request fields
- Bound child loggers carrying fixed context (component, store, ...)
- Console and rotating file handlers configured from the config tree

Example:
    >>> logger = Logger(level=LogLevel.INFO)
    >>> logger.warning("Rule store unavailable", store="yaml", rules=0)
    >>> with logger.add_context(identity_key=42):
    ...     logger.debug("Resolving rule")
"""

import logging
import logging.handlers
import threading
from contextlib import contextmanager
from enum import IntEnum
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DEFAULT_DATEFMT = "%Y-%m-%d %H:%M:%S"


class LogLevel(IntEnum):
    """Log levels matching Python's logging module."""

    DEBUG = logging.DEBUG  # 10
    INFO = logging.INFO  # 20
    WARNING = logging.WARNING  # 30
    ERROR = logging.ERROR  # 40
    CRITICAL = logging.CRITICAL  # 50

    @classmethod
    def parse(cls, level: Union["LogLevel", int, str]) -> "LogLevel":
        """Coerce a level name or number to LogLevel."""
        if isinstance(level, str):
            return cls[level.upper()]
        return cls(level)


class Logger:
    """Structured logger with context support.

    Context given as keyword arguments is rendered after the message as
    ``msg | key=value ...`` and is also attached to the record as
    ``record.context`` for handlers that want the raw dictionary.
    """

    # Thread-local storage for context
    _context_stack = threading.local()

    def __init__(
        self,
        name: str = "planoverride",
        level: Union[LogLevel, str] = LogLevel.INFO,
        handlers: Optional[List[logging.Handler]] = None,
        bound: Optional[Dict[str, Any]] = None,
    ):
        """Initialize logger.

        Args:
            name: Logger name for identification
            level: Minimum log level to output
            handlers: Optional list of logging handlers
            bound: Context attached to every message from this logger
        """
        self.name = name
        self.logger = logging.getLogger(name)
        self._bound = dict(bound or {})
        self.set_level(level)

        if handlers is None:
            handlers = [self._create_console_handler()]

        self.logger.handlers.clear()
        for handler in handlers:
            self.logger.addHandler(handler)

        # Keep our formatting out of the root logger
        self.logger.propagate = False

    @classmethod
    def from_config(cls, logging_config: Optional[Dict[str, Any]], name: str = "planoverride"):
        """Build a logger from the ``logging`` configuration section.

        Args:
            logging_config: Dict with optional ``level``, ``file`` and ``format``
            name: Logger name

        Returns:
            Configured Logger
        """
        logging_config = logging_config or {}
        logger = cls(name=name, level=logging_config.get("level") or LogLevel.INFO)
        log_file = logging_config.get("file")
        if log_file:
            logger.add_handler(logger.create_file_handler(log_file))
        return logger

    def _create_console_handler(self) -> logging.StreamHandler:
        """Create default console handler with formatting."""
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(DEFAULT_FORMAT, datefmt=DEFAULT_DATEFMT))
        return handler

    def create_file_handler(
        self,
        filename: Union[str, Path],
        max_bytes: int = 10 * 1024 * 1024,  # 10MB
        backup_count: int = 5,
    ) -> logging.handlers.RotatingFileHandler:
        """Create rotating file handler.

        Args:
            filename: Path to log file
            max_bytes: Maximum size before rotation
            backup_count: Number of backup files to keep

        Returns:
            Configured rotating file handler
        """
        handler = logging.handlers.RotatingFileHandler(
            filename, maxBytes=max_bytes, backupCount=backup_count
        )
        handler.setFormatter(logging.Formatter(DEFAULT_FORMAT, datefmt=DEFAULT_DATEFMT))
        return handler

    def add_handler(self, handler: logging.Handler) -> None:
        """Add a new output handler."""
        self.logger.addHandler(handler)

    def remove_handler(self, handler: logging.Handler) -> None:
        """Remove an output handler."""
        self.logger.removeHandler(handler)

    def set_level(self, level: Union[LogLevel, str]) -> None:
        """Set the minimum log level.

        Args:
            level: New log level (LogLevel or string)
        """
        self.logger.setLevel(LogLevel.parse(level))

    def get_level(self) -> LogLevel:
        """Get current log level."""
        return LogLevel(self.logger.level)

    def bind(self, **context) -> "Logger":
        """Return a logger sharing this one's output with extra fixed context.

        The child reuses the underlying ``logging.Logger`` and its handlers.

        Args:
            **context: Key-value pairs added to every message

        Returns:
            Bound logger
        """
        child = Logger.__new__(Logger)
        child.name = self.name
        child.logger = self.logger
        child._bound = {**self._bound, **context}
        return child

    def _get_context(self) -> Dict[str, Any]:
        """Get bound context merged with the current thread-local stack."""
        if not hasattr(self._context_stack, "stack"):
            self._context_stack.stack = [{}]

        context = dict(self._bound)
        for ctx in self._context_stack.stack:
            context.update(ctx)
        return context

    def _format_message(self, msg: str, context: Dict[str, Any]) -> str:
        """Format message with context."""
        if context:
            ctx_str = " ".join(f"{k}={v}" for k, v in context.items())
            return f"{msg} | {ctx_str}"
        return msg

    @contextmanager
    def add_context(self, **kwargs):
        """Context manager to add temporary context.

        Example:
            >>> with logger.add_context(identity_key=42):
            ...     logger.info("Applying overrides")
        """
        if not hasattr(self._context_stack, "stack"):
            self._context_stack.stack = [{}]

        self._context_stack.stack.append(kwargs)
        try:
            yield
        finally:
            self._context_stack.stack.pop()

    def _log(self, level: int, msg: str, context: Dict[str, Any], **kwargs) -> None:
        if not self.logger.isEnabledFor(level):
            return
        combined = self._get_context()
        combined.update(context)
        self.logger.log(
            level, self._format_message(msg, combined), extra={"context": combined}, **kwargs
        )

    def debug(self, msg: str, **context) -> None:
        """Log debug message."""
        self._log(logging.DEBUG, msg, context)

    def info(self, msg: str, **context) -> None:
        """Log info message."""
        self._log(logging.INFO, msg, context)

    def warning(self, msg: str, **context) -> None:
        """Log warning message."""
        self._log(logging.WARNING, msg, context)

    def error(self, msg: str, **context) -> None:
        """Log error message."""
        self._log(logging.ERROR, msg, context)

    def exception(self, msg: str, exc: BaseException, **context) -> None:
        """Log exception with traceback.

        Args:
            msg: Log message
            exc: Exception to log
            **context: Additional context key-value pairs
        """
        context["exception_type"] = type(exc).__name__
        context["exception_message"] = str(exc)
        self._log(logging.ERROR, msg, context, exc_info=exc)

    def is_enabled_for(self, level: Union[LogLevel, str]) -> bool:
        """Check if logger is enabled for given level."""
        return self.logger.isEnabledFor(LogLevel.parse(level))


# Global logger instance
_global_logger: Optional[Logger] = None


def get_logger(name: str = "planoverride") -> Logger:
    """Get or create a logger instance.

    Args:
        name: Logger name

    Returns:
        Logger instance
    """
    global _global_logger
    if _global_logger is None or _global_logger.name != name:
        _global_logger = Logger(name=name)
    return _global_logger


def set_global_logger(logger: Logger) -> None:
    """Set the global logger instance."""
    global _global_logger
    _global_logger = logger
