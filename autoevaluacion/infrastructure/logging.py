"""
Logging for the self-assessment service.

Records are tagged with the assessment and business they concern. The tags
live in a ``ContextVar`` so concurrent requests on one event loop don't see
each other's ids. Handlers are installed once, from ``LOG_*`` and
``APP_ENVIRONMENT``, through ``logging.config.dictConfig``.
"""

from __future__ import annotations

import inspect
import json
import logging
import logging.config
from collections.abc import Callable
from contextvars import ContextVar
from datetime import datetime, timezone
from functools import wraps
from pathlib import Path
from types import TracebackType
from typing import Any, ParamSpec, TypeVar, cast

from .config import LoggingConfig, Settings, get_settings

P = ParamSpec("P")
R = TypeVar("R")

ROOT_LOGGER = "autoevaluacion"

_log_context: ContextVar[dict[str, Any]] = ContextVar("autoevaluacion_log_context", default={})

# (console formatter, default file) per APP_ENVIRONMENT
ENVIRONMENT_PRESETS: dict[str, tuple[str | None, str | None]] = {
    "development": ("plain", "./logs/development.log"),
    "production": (None, "./logs/production.log"),
    "testing": (None, None),
}


class JsonLineFormatter(logging.Formatter):
    """One JSON object per line, with the assessment context merged in."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "ts": datetime.now(timezone.utc).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "where": f"{record.module}:{record.funcName}:{record.lineno}",
        }
        entry.update(getattr(record, "ctx", {}))
        for key in ("error_type", "error_message", "user_message", "context"):
            if hasattr(record, key):
                entry[key] = getattr(record, key)
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = {
                "type": record.exc_info[0].__name__,
                "traceback": self.formatException(record.exc_info),
            }
        return json.dumps(entry, ensure_ascii=False, default=str)


class AssessmentContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.ctx = dict(_log_context.get())
        return True


def _handlers(config: LoggingConfig, console_format: str | None) -> dict[str, dict[str, Any]]:
    handlers: dict[str, dict[str, Any]] = {}
    if config.console_enabled and console_format is not None:
        handlers["console"] = {
            "class": "logging.StreamHandler",
            "formatter": "json" if config.structured else console_format,
            "filters": ["assessment"],
            "stream": "ext://sys.stdout",
        }
    if config.file_path:
        Path(config.file_path).parent.mkdir(parents=True, exist_ok=True)
        handlers["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "formatter": "json",
            "filters": ["assessment"],
            "filename": config.file_path,
            "maxBytes": 5 * 1024 * 1024,
            "backupCount": 3,
            "encoding": "utf-8",
        }
    return handlers


def configure_logging(settings: Settings | None = None) -> None:
    """
    Install handlers for the package logger and the noisy third-party ones.

    ``LOG_FILE_PATH`` overrides the environment's default log file; the
    testing environment logs nowhere unless a file is named.

    Example:
        >>> configure_logging(Settings(app={"environment": "production"}))
    """
    settings = settings or get_settings()
    console_format, default_file = ENVIRONMENT_PRESETS.get(
        settings.app.environment, ENVIRONMENT_PRESETS["development"]
    )
    config = settings.logging
    if config.file_path is None and default_file is not None:
        config = config.model_copy(update={"file_path": default_file})

    handlers = _handlers(config, console_format)
    names = list(handlers)
    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "json": {"()": JsonLineFormatter},
                "plain": {
                    "format": "%(asctime)s %(levelname)-7s %(name)s: %(message)s",
                    "datefmt": "%H:%M:%S",
                },
            },
            "filters": {"assessment": {"()": AssessmentContextFilter}},
            "handlers": handlers,
            "loggers": {
                ROOT_LOGGER: {"level": config.level, "handlers": names, "propagate": False},
                "httpx": {"level": "WARNING", "handlers": names, "propagate": False},
                "sqlalchemy.engine": {"level": "WARNING", "handlers": names, "propagate": False},
            },
        }
    )
    get_logger(__name__).info(
        f"Logging configured for {settings.app.environment} at {config.level}"
    )


def get_logger(name: str) -> logging.Logger:
    """Logger under the ``autoevaluacion`` tree, whatever module name is passed."""
    if name == ROOT_LOGGER or name.startswith(f"{ROOT_LOGGER}."):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")


def set_context(**kwargs: Any) -> None:
    """
    Tag every later record of the current task.

    Example:
        >>> set_context(assessment_id=12, business_id=3)
    """
    _log_context.set({**_log_context.get(), **kwargs})


class LogContext:
    """Tags records for the duration of a ``with`` block, then restores the previous tags."""

    def __init__(self, **kwargs: Any):
        self.tags = kwargs
        self._token = None

    def __enter__(self) -> LogContext:
        self._token = _log_context.set({**_log_context.get(), **self.tags})
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        if self._token is not None:
            _log_context.reset(self._token)


def log_operation(
    operation: str, logger: logging.Logger | None = None
) -> Callable[[Callable[P, R]], Callable[P, R]]:
    """
    Log start, completion and failure of a flow operation.

    Coroutine functions get an async wrapper, so the tags stay in place
    across the awaits inside the operation.

    Example:
        >>> @log_operation("select_segment")
        ... async def select_segment(segment_id: int):
        ...     pass
    """

    def decorator(func: Callable[P, R]) -> Callable[P, R]:
        op_logger = logger or get_logger(func.__module__)

        def failed(e: Exception) -> None:
            op_logger.error(f"{operation} failed: {type(e).__name__}: {e}", exc_info=True)

        if inspect.iscoroutinefunction(func):

            @wraps(func)
            async def run_async(*args: P.args, **kwargs: P.kwargs) -> Any:
                with LogContext(operation=operation):
                    op_logger.debug(f"{operation} started")
                    try:
                        result = await func(*args, **kwargs)
                    except Exception as e:
                        failed(e)
                        raise
                    op_logger.info(f"{operation} done")
                    return result

            return cast(Callable[P, R], run_async)

        @wraps(func)
        def run(*args: P.args, **kwargs: P.kwargs) -> R:
            with LogContext(operation=operation):
                op_logger.debug(f"{operation} started")
                try:
                    result = func(*args, **kwargs)
                except Exception as e:
                    failed(e)
                    raise
                op_logger.info(f"{operation} done")
                return result

        return run

    return decorator


if not logging.getLogger(ROOT_LOGGER).handlers:
    configure_logging()
