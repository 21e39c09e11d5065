# Structured JSON logging for the API and the jobs.
# APILoggingMiddleware writes one record per request with the request id,
# the resolved org, the caller (admin user or rep) and the error code that
# the domain error handlers put on the response.

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from time import monotonic
from typing import Any

from fastapi import Request
from jose import JWTError
from starlette.middleware.base import BaseHTTPMiddleware

from entry.core.config import settings
from entry.core.security import REP_SCOPE, decode_access_token


# Attributes every LogRecord has; anything else on a record came from extra=.
_RECORD_ATTRS = set(vars(logging.LogRecord("", logging.INFO, "", 0, "", None, None))) | {"message", "asctime"}

# Request fields are emitted even when empty so log queries can rely on them.
REQUEST_FIELDS = (
    "request_id",
    "org_id",
    "user_id",
    "rep_id",
    "route",
    "method",
    "status_code",
    "duration_ms",
    "error_code",
)


class JsonLogFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        extras = {key: value for key, value in vars(record).items() if key not in _RECORD_ATTRS}
        payload.update(
            (key, value) for key, value in extras.items() if value is not None or key in REQUEST_FIELDS
        )
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, separators=(",", ":"), ensure_ascii=True, default=str)


def _json_handler() -> logging.Handler:
    handler = logging.StreamHandler()
    handler.setFormatter(JsonLogFormatter())
    return handler


def configure_logging(level: str | None = None) -> None:
    """Send every `entry.*` logger through the JSON formatter."""
    package_logger = logging.getLogger("entry")
    if not any(isinstance(h.formatter, JsonLogFormatter) for h in package_logger.handlers):
        package_logger.addHandler(_json_handler())
    package_logger.setLevel((level or settings.LOG_LEVEL).upper())


def get_structured_logger(name: str) -> logging.Logger:
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger
    logger.addHandler(_json_handler())
    logger.setLevel(settings.LOG_LEVEL.upper())
    logger.propagate = False
    return logger


logger = get_structured_logger("api_logger")


def _resolve_route(request: Request) -> str:
    route = request.scope.get("route")
    return getattr(route, "path", None) or request.url.path


def _resolve_caller(request: Request) -> tuple[Any, Any]:
    """(user_id, rep_id) from the bearer token, whichever kind it is."""
    auth = request.headers.get("Authorization") or ""
    scheme, _, token = auth.partition(" ")
    if scheme.lower() != "bearer" or not token:
        return None, None
    try:
        claims = decode_access_token(token)
    except JWTError:
        return None, None
    if claims.get("scope") == REP_SCOPE:
        return None, claims.get("rep_id")
    return claims.get("user_id") or claims.get("sub"), None


def _request_extra(request: Request, started: float) -> dict[str, Any]:
    user_id, rep_id = _resolve_caller(request)
    state = request.state
    duration_ms = round((monotonic() - started) * 1000.0, 2)
    return {
        "request_id": getattr(state, "request_id", None),
        "org_id": getattr(state, "org_id", None),
        "org_hint": getattr(state, "org_hint", None),
        "client_ip": getattr(state, "client_ip", None),
        "user_id": user_id,
        "rep_id": rep_id,
        "route": _resolve_route(request),
        "path": request.url.path,
        "method": request.method,
        "duration_ms": duration_ms,
        "slow": duration_ms >= settings.SLOW_REQUEST_MS or None,
    }


class APILoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        started = monotonic()
        try:
            response = await call_next(request)
        except Exception:
            extra = _request_extra(request, started)
            extra.update(status_code=500, error_code="unhandled_exception")
            logger.exception("request.failed", extra=extra)
            raise

        extra = _request_extra(request, started)
        extra.update(status_code=response.status_code, error_code=response.headers.get("X-Error-Code"))
        level = logging.ERROR if response.status_code >= 500 else logging.INFO
        logger.log(level, "request.completed", extra=extra)
        return response
