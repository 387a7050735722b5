"""Application logging configuration and formatter utilities."""

from __future__ import annotations

import json
import logging
import sys
import time
from contextvars import ContextVar, Token
from datetime import UTC, datetime
from typing import Any

from clawhuddle.core.config import settings
from clawhuddle.core.version import APP_NAME, APP_VERSION

TRACE_LEVEL = 5
logging.addLevelName(TRACE_LEVEL, "TRACE")

_REQUEST_ID_CONTEXT: ContextVar[str | None] = ContextVar("request_id", default=None)
_REQUEST_METHOD_CONTEXT: ContextVar[str | None] = ContextVar("request_method", default=None)
_REQUEST_PATH_CONTEXT: ContextVar[str | None] = ContextVar("request_path", default=None)

# Chatty third-party loggers capped at WARNING unless TRACE is requested.
_QUIET_LIBRARIES = ("httpx", "httpcore", "docker", "urllib3", "rq.worker")
_SQL_LOGGERS = ("sqlalchemy", "sqlalchemy.engine", "sqlalchemy.pool")


def _trace(self: logging.Logger, message: str, *args: object, **kwargs: Any) -> None:
    """Log a TRACE-level message when the logger is TRACE-enabled."""
    if self.isEnabledFor(TRACE_LEVEL):
        kwargs.setdefault("stacklevel", 2)
        self.log(TRACE_LEVEL, message, *args, **kwargs)


logging.Logger.trace = _trace  # type: ignore[attr-defined]


def set_request_id(request_id: str | None) -> Token[str | None]:
    """Bind request-id to logging context for the current task."""
    normalized = (request_id or "").strip() or None
    return _REQUEST_ID_CONTEXT.set(normalized)


def reset_request_id(token: Token[str | None]) -> None:
    _REQUEST_ID_CONTEXT.reset(token)


def get_request_id() -> str | None:
    return _REQUEST_ID_CONTEXT.get()


def set_request_route_context(
    method: str | None,
    path: str | None,
) -> tuple[Token[str | None], Token[str | None]]:
    """Bind request method/path to logging context for the current task."""
    return (
        _REQUEST_METHOD_CONTEXT.set((method or "").strip().upper() or None),
        _REQUEST_PATH_CONTEXT.set((path or "").strip() or None),
    )


def reset_request_route_context(tokens: tuple[Token[str | None], Token[str | None]]) -> None:
    method_token, path_token = tokens
    _REQUEST_METHOD_CONTEXT.reset(method_token)
    _REQUEST_PATH_CONTEXT.reset(path_token)


_STANDARD_LOG_RECORD_ATTRS = frozenset(
    {
        "args",
        "asctime",
        "created",
        "exc_info",
        "exc_text",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "message",
        "msg",
        "name",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "thread",
        "threadName",
        "taskName",
        "app",
        "version",
    },
)


class AppLogFilter(logging.Filter):
    """Inject app metadata and request context into each log record."""

    def __init__(self, app_name: str, version: str) -> None:
        super().__init__()
        self._app_name = app_name
        self._version = version

    def filter(self, record: logging.LogRecord) -> bool:
        record.app = self._app_name
        record.version = self._version
        for attr, context in (
            ("request_id", _REQUEST_ID_CONTEXT),
            ("method", _REQUEST_METHOD_CONTEXT),
            ("path", _REQUEST_PATH_CONTEXT),
        ):
            if getattr(record, attr, None):
                continue
            value = context.get()
            if value:
                setattr(record, attr, value)
        return True


class JsonFormatter(logging.Formatter):
    """Formatter that serializes log records as compact JSON."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "app": getattr(record, "app", APP_NAME),
            "version": getattr(record, "version", APP_VERSION),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        if record.stack_info:
            payload["stack"] = self.formatStack(record.stack_info)
        for key, value in record.__dict__.items():
            if key in _STANDARD_LOG_RECORD_ATTRS or key in payload:
                continue
            payload[key] = value
        return json.dumps(payload, separators=(",", ":"), default=str)


class KeyValueFormatter(logging.Formatter):
    """Formatter that appends extra fields as `key=value` pairs."""

    def format(self, record: logging.LogRecord) -> str:
        base = super().format(record)
        extras = " ".join(
            f"{key}={value}"
            for key, value in record.__dict__.items()
            if key not in _STANDARD_LOG_RECORD_ATTRS
        )
        return f"{base} {extras}" if extras else base


class AppLogger:
    """Centralized logging setup utility for the API and worker processes."""

    _configured = False

    @classmethod
    def _resolve_level(cls) -> tuple[str, int]:
        level_name = (settings.log_level or "INFO").upper()
        if level_name == "TRACE":
            return level_name, TRACE_LEVEL
        if level_name.isdigit():
            return level_name, int(level_name)
        return level_name, logging.getLevelNamesMapping().get(level_name, logging.INFO)

    @classmethod
    def configure(cls, *, force: bool = False) -> None:
        """Configure root logging handlers, formatters, and library levels."""
        if cls._configured and not force:
            return

        level_name, level = cls._resolve_level()
        handler = logging.StreamHandler(sys.stdout)
        handler.addFilter(AppLogFilter(APP_NAME, APP_VERSION))
        format_name = (settings.log_format or "text").lower()
        if format_name == "json":
            formatter: logging.Formatter = JsonFormatter()
        else:
            formatter = KeyValueFormatter(
                "%(asctime)s %(levelname)s %(name)s %(message)s app=%(app)s version=%(version)s",
            )
            if settings.log_use_utc:
                formatter.converter = time.gmtime
        handler.setFormatter(formatter)

        root = logging.getLogger()
        root.setLevel(level)
        root.handlers.clear()
        root.addHandler(handler)

        for logger_name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
            logging.getLogger(logger_name).setLevel(level)
        trace_enabled = level_name == "TRACE"
        for logger_name in _QUIET_LIBRARIES:
            logging.getLogger(logger_name).setLevel(logging.DEBUG if trace_enabled else logging.WARNING)
        for logger_name in _SQL_LOGGERS:
            sql_logger = logging.getLogger(logger_name)
            sql_logger.disabled = not trace_enabled
            if trace_enabled:
                sql_logger.setLevel(logging.INFO)

        logging.getLogger(__name__).info(
            "logging.configured level=%s format=%s use_utc=%s",
            level_name,
            format_name,
            settings.log_use_utc,
        )
        cls._configured = True

    @classmethod
    def get_logger(cls, name: str | None = None) -> logging.Logger:
        if not cls._configured:
            cls.configure()
        return logging.getLogger(name)


def configure_logging() -> None:
    """Configure global application logging once during startup."""
    AppLogger.configure()


def get_logger(name: str | None = None) -> logging.Logger:
    """Return an app logger from the centralized logger configuration."""
    return AppLogger.get_logger(name)
