from __future__ import annotations

import logging
import threading
import time
import uuid
from typing import Dict, Optional

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from activity_sync.core.logging import bind_request_context, get_logger, reset_request_context

REQUEST_ID_HEADER = "X-Request-ID"

COUNTERS = (
    "requests_total",
    "requests_errors_total",
    "sync_runs_total",
    "sync_connections_total",
    "sync_connections_failed_total",
    "sync_latency_ms_sum",
    "activities_found_total",
    "activities_inserted_total",
    "token_refresh_total",
    "token_refresh_failed_total",
    "token_refresh_runs_total",
    "oauth_callbacks_total",
    "oauth_callbacks_failed_total",
)

_lock = threading.Lock()
_metrics: Dict[str, float] = dict.fromkeys(COUNTERS, 0.0)


# PUBLIC_INTERFACE
def increment_metric(name: str, inc: float = 1.0) -> None:
    """Add inc to a process-local counter. Sync routes run in a threadpool, hence the lock."""
    with _lock:
        _metrics[name] = _metrics.get(name, 0.0) + inc


# PUBLIC_INTERFACE
def observe_latency(name: str, ms: float) -> None:
    """Accumulate a duration in milliseconds under a *_ms_sum counter."""
    increment_metric(name, ms)


def metrics_snapshot() -> Dict[str, float]:
    with _lock:
        return dict(_metrics)


def reset_metrics() -> None:
    with _lock:
        _metrics.clear()
        _metrics.update(dict.fromkeys(COUNTERS, 0.0))


def mask_secret_value(value: Optional[str], keep: int = 4) -> Optional[str]:
    """Secret with all but the last `keep` characters starred out."""
    if value is None:
        return None
    visible = value[-keep:] if len(value) > keep else ""
    return "*" * (len(value) - len(visible)) + visible


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Bind request id, caller and route to the log context; count requests and errors."""

    def __init__(self, app, user_header_name: str = "X-User-Id", logger: Optional[logging.Logger] = None):
        super().__init__(app)
        self.user_header_name = user_header_name
        self.logger = logger or get_logger(__name__)

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        tokens = bind_request_context(
            request_id, request.headers.get(self.user_header_name) or "-", request.url.path
        )
        increment_metric("requests_total")
        started = time.perf_counter()
        self.logger.info("request_start", extra={"method": request.method})
        status = 500
        try:
            response = await call_next(request)
            status = response.status_code
            response.headers[REQUEST_ID_HEADER] = request_id
            return response
        except Exception:
            self.logger.exception("request_error", extra={"method": request.method})
            raise
        finally:
            if status >= 400:
                increment_metric("requests_errors_total")
            self.logger.info(
                "request_end",
                extra={"status": status, "duration_ms": round((time.perf_counter() - started) * 1000.0, 2)},
            )
            reset_request_context(tokens)
