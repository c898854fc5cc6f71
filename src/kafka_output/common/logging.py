"""
Logging utilities for kafka_output.

Provides structured logging helpers, JSON/console formatters and a per-task
log context that follows asyncio tasks.
"""

import contextvars
import functools
import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Optional, TypeVar

F = TypeVar("F", bound=Callable[..., Any])

DEFAULT_CONSOLE_LEVEL = logging.INFO

# Noisy loggers to suppress
NOISY_LOGGERS = [
    "aiokafka",
    "kafka",
    "urllib3",
    "httpx",
    "httpcore",
]

_task_index: contextvars.ContextVar[Optional[int]] = contextvars.ContextVar(
    "kafka_output_task_index", default=None
)
_topic: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "kafka_output_topic", default=None
)


def set_log_context(
    task_index: Optional[int] = None,
    topic: Optional[str] = None,
) -> None:
    """Set context fields injected into every record of the current task."""
    if task_index is not None:
        _task_index.set(task_index)
    if topic is not None:
        _topic.set(topic)


def get_log_context() -> Dict[str, Any]:
    return {"task_index": _task_index.get(), "topic": _topic.get()}


class JSONFormatter(logging.Formatter):
    """
    JSON log formatter with context injection.

    Produces one JSON object per line for easy parsing with jq/grep.
    """

    # Fields to extract from LogRecord extras
    EXTRA_FIELDS = [
        "task_index",
        "topic",
        "partition",
        "error_category",
        "error_message",
        "error_type",
        "rows_processed",
        "messages_submitted",
        "messages_acknowledged",
        "messages_failed",
        "messages_retried",
        "task_count",
        "failed_tasks",
        "state",
        "serialize_format",
        "bootstrap_servers",
        "subject",
        "schema_id",
        "partition_count",
        "option",
        "duration_ms",
    ]

    def format(self, record: logging.LogRecord) -> str:
        log_entry: Dict[str, Any] = {
            "ts": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3]
            + "Z",
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }

        for key, value in get_log_context().items():
            if value is not None:
                log_entry[key] = value

        if record.levelno in (logging.DEBUG, logging.ERROR, logging.CRITICAL):
            log_entry["file"] = f"{record.filename}:{record.lineno}"

        for field in self.EXTRA_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                log_entry[field] = value

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str, ensure_ascii=False)


class ConsoleFormatter(logging.Formatter):
    """Human-readable console formatter, prefixed with the task index when set."""

    def format(self, record: logging.LogRecord) -> str:
        parts = [
            datetime.now().strftime("%Y-%m-%d %H:%M:%S"),
            record.levelname,
        ]

        ctx = get_log_context()
        if ctx["task_index"] is not None:
            parts.append(f"[task-{ctx['task_index']}]")

        prefix = " - ".join(parts)
        message = f"{prefix} - {record.getMessage()}"
        if record.exc_info:
            message = f"{message}\n{self.formatException(record.exc_info)}"
        return message


def setup_logging(
    level: int = DEFAULT_CONSOLE_LEVEL,
    json_format: bool = False,
    log_file: Optional[Path] = None,
    suppress_noisy: bool = True,
) -> logging.Logger:
    """
    Configure root logging with a console handler and optional file handler.

    Args:
        level: Minimum level for all handlers
        json_format: Use JSON format on the console (file output is always JSON)
        log_file: Optional path of a JSON log file
        suppress_noisy: Quiet down Kafka and HTTP client loggers

    Returns:
        The package logger
    """
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(JSONFormatter() if json_format else ConsoleFormatter())

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    # Remove existing handlers to avoid duplicates on re-init
    root_logger.handlers.clear()
    root_logger.addHandler(console_handler)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(level)
        file_handler.setFormatter(JSONFormatter())
        root_logger.addHandler(file_handler)

    if suppress_noisy:
        for logger_name in NOISY_LOGGERS:
            logging.getLogger(logger_name).setLevel(logging.WARNING)

    logger = logging.getLogger("kafka_output")
    logger.debug(f"Logging initialized: json={json_format}, file={log_file}")
    return logger


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Logger instance
    """
    return logging.getLogger(name)


def log_with_context(
    logger: logging.Logger,
    level: int,
    msg: str,
    **kwargs: Any,
) -> None:
    """
    Log with structured context fields.

    Example:
        log_with_context(
            logger, logging.INFO, "Task committed",
            messages_acknowledged=report.acknowledged,
        )
    """
    logger.log(level, msg, extra=kwargs)


def log_exception(
    logger: logging.Logger,
    exc: BaseException,
    msg: str,
    level: int = logging.ERROR,
    include_traceback: bool = True,
    **kwargs: Any,
) -> None:
    """
    Log exception with context and optional traceback.

    Automatically extracts error_category from OutputError subclasses.

    Args:
        logger: Logger instance
        exc: Exception to log
        msg: Context message
        level: Log level (default: ERROR)
        include_traceback: Include full traceback (default: True)
        **kwargs: Additional context fields
    """
    error_category = kwargs.get("error_category")
    if error_category is None and hasattr(exc, "category"):
        cat = exc.category
        kwargs["error_category"] = cat.value if hasattr(cat, "value") else str(cat)

    error_msg = str(exc)
    if len(error_msg) > 500:
        error_msg = error_msg[:500] + "..."
    kwargs["error_message"] = error_msg

    if include_traceback:
        logger.log(level, msg, exc_info=exc, extra=kwargs)
    else:
        logger.log(level, msg, extra=kwargs)


def logged_operation(
    level: int = logging.DEBUG,
    operation_name: Optional[str] = None,
) -> Callable[[F], F]:
    """
    Decorator logging completion or failure of an async method.

    Example:
        class TransactionalPublisher(LoggedClass):
            @logged_operation(level=logging.INFO)
            async def finish(self):
                ...
    """

    def decorator(func: F) -> F:
        @functools.wraps(func)
        async def async_wrapper(self, *args, **kwargs):
            _logger = getattr(self, "_logger", None) or get_logger(
                self.__class__.__module__
            )
            full_op = f"{self.__class__.__name__}.{operation_name or func.__name__}"
            try:
                result = await func(self, *args, **kwargs)
                log_with_context(_logger, level, f"{full_op} completed")
                return result
            except Exception as e:
                log_exception(_logger, e, f"{full_op} failed", include_traceback=False)
                raise

        return async_wrapper  # type: ignore

    return decorator


class LoggedClass:
    """
    Mixin providing logging infrastructure for classes.

    Provides:
    - self._logger: Logger instance
    - self._log(): Log with auto-extracted context
    - self._log_exception(): Exception logging with context
    """

    log_component: Optional[str] = None

    def __init__(self, *args, **kwargs):
        logger_name = self.__class__.__module__
        if self.log_component:
            logger_name = f"{logger_name}.{self.log_component}"
        self._logger = get_logger(logger_name)
        super().__init__(*args, **kwargs)

    def _log_context(self) -> Dict[str, Any]:
        ctx: Dict[str, Any] = {}
        for attr in ["task_index"]:
            value = getattr(self, attr, None)
            if value is not None:
                ctx[attr] = value
        return ctx

    def _log(self, level: int, msg: str, **extra: Any) -> None:
        context = self._log_context()
        context.update(extra)
        log_with_context(self._logger, level, msg, **context)

    def _log_exception(
        self,
        exc: BaseException,
        msg: str,
        level: int = logging.ERROR,
        **extra: Any,
    ) -> None:
        context = self._log_context()
        context.update(extra)
        log_exception(self._logger, exc, msg, level=level, **context)
