"""Structured logging with contextvars for per-item tracing.

Every log entry emitted while a worker processes a package carries the
item index, package identifier, worker id and current stage, so the
interleaved output of concurrent workers can be untangled afterwards.
"""

from __future__ import annotations

import contextlib
import contextvars
import json
import logging
import sys
import time
import traceback
from dataclasses import asdict, dataclass, field
from typing import Any

# Context variables for item tracking
item_ctx: contextvars.ContextVar[int | None] = contextvars.ContextVar("item", default=None)
package_ctx: contextvars.ContextVar[str | None] = contextvars.ContextVar("package", default=None)
worker_ctx: contextvars.ContextVar[int | None] = contextvars.ContextVar("worker", default=None)
stage_ctx: contextvars.ContextVar[str | None] = contextvars.ContextVar("stage", default=None)


@dataclass
class LogContext:
    """Structured log context that propagates through the call stack."""

    item: int | None = None
    package: str | None = None
    worker: int | None = None
    stage: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary, excluding None values."""
        result = {}
        for key, value in asdict(self).items():
            if value is not None and key != "extra":
                result[key] = value
        if self.extra:
            result.update(self.extra)
        return result


class StructuredLogger:
    """Structured logger with context propagation.

    Example:
        logger = StructuredLogger("impact.pipeline")

        with logger.context(item=3, package="example.com/foo", worker=1):
            logger.info("Running pre-patch tests", log_file="pre-test.log")
            # Output: {"level": "INFO", "message": "Running pre-patch tests",
            #          "item": 3, "package": "example.com/foo", "worker": 1,
            #          "log_file": "pre-test.log", "timestamp": ...}
    """

    def __init__(self, name: str, level: int = logging.NOTSET):
        """Initialize structured logger.

        Args:
            name: Logger name (typically module name)
            level: Logging level; NOTSET defers to configure_logging()
        """
        self.name = name
        self._logger = logging.getLogger(name)
        if level != logging.NOTSET:
            self._logger.setLevel(level)

    def _get_context(self) -> dict[str, Any]:
        """Get current context from contextvars."""
        ctx: dict[str, Any] = {}

        if (item := item_ctx.get()) is not None:
            ctx["item"] = item
        if package := package_ctx.get():
            ctx["package"] = package
        if (worker := worker_ctx.get()) is not None:
            ctx["worker"] = worker
        if stage := stage_ctx.get():
            ctx["stage"] = stage

        return ctx

    def _log(self, level: int, message: str, **kwargs: Any) -> None:
        """Internal logging method that adds context."""
        log_data = self._get_context()
        log_data.update(kwargs)

        extra = {"structured_data": log_data}
        self._logger.log(level, message, extra=extra)

    def debug(self, message: str, **kwargs: Any) -> None:
        """Log debug message with context."""
        self._log(logging.DEBUG, message, **kwargs)

    def info(self, message: str, **kwargs: Any) -> None:
        """Log info message with context."""
        self._log(logging.INFO, message, **kwargs)

    def warning(self, message: str, **kwargs: Any) -> None:
        """Log warning message with context."""
        self._log(logging.WARNING, message, **kwargs)

    def error(self, message: str, **kwargs: Any) -> None:
        """Log error message with context."""
        self._log(logging.ERROR, message, **kwargs)

    def exception(self, message: str, exc: BaseException | None = None, **kwargs: Any) -> None:
        """Log exception with traceback and context.

        Args:
            message: Error message
            exc: Optional exception to log
            **kwargs: Additional context
        """
        if exc:
            kwargs["exception_type"] = type(exc).__name__
            kwargs["exception_message"] = str(exc)
            kwargs["traceback"] = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))

        self._log(logging.ERROR, message, **kwargs)

    def context(
        self,
        item: int | None = None,
        package: str | None = None,
        worker: int | None = None,
        stage: str | None = None,
    ) -> LogContextManager:
        """Create a context manager for scoped logging context.

        Example:
            with logger.context(stage="fetch"):
                logger.info("Fetching code")
        """
        return LogContextManager(item=item, package=package, worker=worker, stage=stage)


class LogContextManager:
    """Context manager for scoped logging context."""

    def __init__(
        self,
        item: int | None = None,
        package: str | None = None,
        worker: int | None = None,
        stage: str | None = None,
    ):
        self.item = item
        self.package = package
        self.worker = worker
        self.stage = stage

        # Store tokens for cleanup
        self._tokens: list[contextvars.Token[Any]] = []

    def __enter__(self) -> LogContextManager:
        """Enter context and set contextvars."""
        if self.item is not None:
            self._tokens.append(item_ctx.set(self.item))
        if self.package:
            self._tokens.append(package_ctx.set(self.package))
        if self.worker is not None:
            self._tokens.append(worker_ctx.set(self.worker))
        if self.stage:
            self._tokens.append(stage_ctx.set(self.stage))

        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Exit context and restore contextvars."""
        for token in reversed(self._tokens):
            with contextlib.suppress(ValueError):
                token.var.reset(token)
        self._tokens.clear()


class StructuredFormatter(logging.Formatter):
    """JSON formatter for structured logs."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON.

        Args:
            record: Log record

        Returns:
            JSON string
        """
        log_entry = {
            "timestamp": time.time(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        # Add file/line info in debug mode
        if record.levelno == logging.DEBUG:
            log_entry["file"] = record.pathname
            log_entry["line"] = record.lineno
            log_entry["function"] = record.funcName

        if hasattr(record, "structured_data"):
            log_entry.update(record.structured_data)

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, ensure_ascii=False, default=str)


class ConsoleFormatter(logging.Formatter):
    """Human readable progress lines: ``0003: w1 [fetch] Fetching code (key=value)``."""

    def format(self, record: logging.LogRecord) -> str:
        data = dict(getattr(record, "structured_data", {}) or {})
        prefix = ""
        item = data.pop("item", None)
        worker = data.pop("worker", None)
        stage = data.pop("stage", None)
        data.pop("package", None)
        if item is not None:
            prefix += f"{item:04d}: "
        if worker is not None:
            prefix += f"w{worker} "
        if stage:
            prefix += f"[{stage}] "

        line = prefix + record.getMessage()
        if data:
            fields = " ".join(f"{k}={v}" for k, v in data.items() if k != "traceback")
            if fields:
                line += f" ({fields})"
        if record.levelno >= logging.WARNING:
            line = f"{record.levelname}: {line}"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        if "traceback" in data and record.levelno >= logging.ERROR:
            line += "\n" + str(data["traceback"]).rstrip()
        return line


_loggers: dict[str, StructuredLogger] = {}


def get_logger(name: str, level: int = logging.NOTSET) -> StructuredLogger:
    """Get or create a structured logger.

    Args:
        name: Logger name
        level: Logging level

    Returns:
        StructuredLogger instance
    """
    if name not in _loggers:
        _loggers[name] = StructuredLogger(name, level)
    return _loggers[name]


def configure_logging(
    level: int = logging.INFO,
    format_json: bool = False,
    stream: Any = None,
) -> None:
    """Configure global logging settings.

    Args:
        level: Global logging level
        format_json: Use JSON formatting instead of console progress lines
        stream: Output stream (defaults to stderr)
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(stream or sys.stderr)

    if format_json:
        handler.setFormatter(StructuredFormatter())
    else:
        handler.setFormatter(ConsoleFormatter())

    root_logger.addHandler(handler)
