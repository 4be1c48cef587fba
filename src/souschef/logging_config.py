"""Structured logging for the souschef graph store.

Store operations run inside a `LoggingContext` carrying the graph id and the
requesting user, so every line logged by the client and the store can be
traced back to one interaction.
"""

import json
import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any

from souschef.config import Settings, get_settings

request_id_ctx: ContextVar[str | None] = ContextVar("request_id", default=None)
user_id_ctx: ContextVar[str | None] = ContextVar("user_id", default=None)
graph_id_ctx: ContextVar[str | None] = ContextVar("graph_id", default=None)

_CONTEXT_VARS: dict[str, ContextVar] = {
    "request_id": request_id_ctx,
    "user_id": user_id_ctx,
    "graph_id": graph_id_ctx,
}

# Short tags used by the text formatter
_CONTEXT_TAGS = {"request_id": "req", "user_id": "user", "graph_id": "graph"}

_configured = False


def _current_context() -> dict[str, str]:
    return {name: value for name, var in _CONTEXT_VARS.items() if (value := var.get())}


class StructuredJsonFormatter(logging.Formatter):
    """One JSON object per line, for log shippers."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **_current_context(),
        }
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        payload["location"] = {
            "file": record.filename,
            "line": record.lineno,
            "function": record.funcName,
        }
        return json.dumps(payload)


class ContextualFormatter(logging.Formatter):
    """Human-readable formatter with the graph/user context inline."""

    def format(self, record: logging.LogRecord) -> str:
        tags = [
            f"{_CONTEXT_TAGS[name]}={value[:8] if name == 'request_id' else value}"
            for name, value in _current_context().items()
        ]
        context_str = f" [{', '.join(tags)}]" if tags else ""
        timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")

        formatted = (
            f"{timestamp} | {record.levelname.ljust(8)} | {record.name}{context_str} | "
            f"{record.getMessage()}"
        )
        if record.exc_info:
            formatted += "\n" + self.formatException(record.exc_info)
        return formatted


class ContextLogger(logging.LoggerAdapter):
    """Logger adapter that attaches the current context as `extra` fields."""

    def process(self, msg: str, kwargs: dict) -> tuple[str, dict]:
        extra = kwargs.get("extra", {})
        extra.update(_current_context())
        kwargs["extra"] = extra
        return msg, kwargs


def get_logger(name: str) -> ContextLogger:
    """Get a context-aware logger for the given module name."""
    return ContextLogger(logging.getLogger(name), {})


def configure_logging(settings: Settings | None = None, force: bool = False) -> None:
    """
    Install a stdout handler on the `souschef` logger.

    The level comes from `LOG_LEVEL` and the format from `LOG_FORMAT`
    ("text" or "json"). Subsequent calls are no-ops unless `force` is set.
    """
    global _configured
    if _configured and not force:
        return

    settings = settings or get_settings()
    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    json_format = settings.log_format.lower() == "json"

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(StructuredJsonFormatter() if json_format else ContextualFormatter())

    package_logger = logging.getLogger("souschef")
    for existing in package_logger.handlers[:]:
        package_logger.removeHandler(existing)
    package_logger.addHandler(handler)
    package_logger.setLevel(level)

    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    _configured = True
    get_logger(__name__).info(
        f"Logging configured: level={logging.getLevelName(level)}, "
        f"format={'json' if json_format else 'text'}"
    )


def set_context(
    request_id: str | None = None,
    user_id: str | None = None,
    graph_id: str | None = None,
) -> None:
    """Set logging context variables."""
    for name, value in (("request_id", request_id), ("user_id", user_id), ("graph_id", graph_id)):
        if value is not None:
            _CONTEXT_VARS[name].set(value)


def clear_context() -> None:
    """Clear all logging context variables."""
    for var in _CONTEXT_VARS.values():
        var.set(None)


class LoggingContext:
    """Context manager scoping request, user and graph ids for log lines."""

    def __init__(
        self,
        request_id: str | None = None,
        user_id: str | None = None,
        graph_id: str | None = None,
    ):
        self.values = {"request_id": request_id, "user_id": user_id, "graph_id": graph_id}
        self._tokens: dict[str, Any] = {}

    def __enter__(self) -> "LoggingContext":
        for name, value in self.values.items():
            if value is not None:
                self._tokens[name] = _CONTEXT_VARS[name].set(value)
        return self

    def __exit__(self, *args: Any) -> None:
        for name, token in self._tokens.items():
            _CONTEXT_VARS[name].reset(token)
        self._tokens.clear()
