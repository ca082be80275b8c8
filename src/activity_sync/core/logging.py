from __future__ import annotations

import json
import logging
import os
from contextvars import ContextVar
from typing import Any, Dict, Optional, Tuple

request_id_var: ContextVar[str] = ContextVar("request_id", default="-")
user_id_var: ContextVar[str] = ContextVar("user_id", default="-")
route_var: ContextVar[str] = ContextVar("route", default="-")

# Attributes every LogRecord carries; anything else came in through extra=.
_RECORD_ATTRS = frozenset(logging.LogRecord("", 0, "", 0, "", None, None).__dict__) | {"message", "asctime"}
_PLAIN_FORMAT = "%(asctime)s %(levelname)-7s %(name)s [%(request_id)s|%(user_id)s|%(route)s] %(message)s"


def bind_request_context(request_id: str, user_id: str, route: str) -> Tuple[Any, Any, Any]:
    """Set the per-request log context. Returns tokens for reset_request_context."""
    return request_id_var.set(request_id), user_id_var.set(user_id), route_var.set(route)


def reset_request_context(tokens: Tuple[Any, Any, Any]) -> None:
    for var, token in zip((request_id_var, user_id_var, route_var), tokens):
        var.reset(token)


class RequestContextFilter(logging.Filter):
    """Stamp request_id, user_id and route onto every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id_var.get()
        # an explicit extra={"user_id": ...} is kept
        if getattr(record, "user_id", None) is None:
            record.user_id = user_id_var.get()
        record.route = route_var.get()
        return True


def _jsonable(value: Any) -> Any:
    try:
        json.dumps(value)
    except (TypeError, ValueError):
        return str(value)
    return value


class JsonFormatter(logging.Formatter):
    """One JSON object per line. Fields passed via extra= are merged in."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "ts": self.formatTime(record, datefmt="%Y-%m-%dT%H:%M:%S%z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(
            {key: _jsonable(val) for key, val in record.__dict__.items() if key not in _RECORD_ATTRS}
        )
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, separators=(",", ":"))


_handler: Optional[logging.Handler] = None


# PUBLIC_INTERFACE
def configure_logging(level: Optional[str] = None, fmt: Optional[str] = None) -> None:
    """Install (or retune) the root handler. LOG_LEVEL and LOG_FORMAT (json|plain) are the defaults."""
    global _handler
    root = logging.getLogger()
    root.setLevel((level or os.getenv("LOG_LEVEL", "INFO")).upper())
    if _handler is None:
        _handler = logging.StreamHandler()
        _handler.addFilter(RequestContextFilter())
        root.addHandler(_handler)
    if (fmt or os.getenv("LOG_FORMAT", "json")).lower() == "plain":
        _handler.setFormatter(logging.Formatter(_PLAIN_FORMAT))
    else:
        _handler.setFormatter(JsonFormatter())


# PUBLIC_INTERFACE
def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Module logger; the first call installs the root handler."""
    if _handler is None:
        configure_logging()
    return logging.getLogger(name or "activity_sync")
