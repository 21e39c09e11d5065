"""
In-memory sliding-window rate limiting.

Each named limiter keeps its own store of request timestamps per key.
State lives in the process, so limits are per-instance; that is fine
for abuse damping on public checkout and login routes.
"""

from __future__ import annotations

import time
from threading import Lock

from fastapi import HTTPException, Request, status

from entry.core.config import settings
from entry.core.metrics import RATE_LIMIT_BLOCKS_TOTAL


CLEANUP_INTERVAL_SECONDS = 60


class RateLimiter:
    def __init__(self, name: str, limit: int, window_seconds: int):
        self.name = name
        self.limit = limit
        self.window_seconds = window_seconds
        self._hits: dict[str, list[float]] = {}
        self._last_cleanup = 0.0
        self._lock = Lock()

    def _cleanup(self, now: float) -> None:
        if now - self._last_cleanup < CLEANUP_INTERVAL_SECONDS:
            return
        self._last_cleanup = now
        cutoff = now - self.window_seconds
        stale = [key for key, hits in self._hits.items() if not hits or hits[-1] <= cutoff]
        for key in stale:
            self._hits.pop(key, None)

    def check(self, key: str, *, now: float | None = None) -> tuple[bool, int]:
        """Record a hit for key. Returns (allowed, retry_after_seconds)."""
        now = time.monotonic() if now is None else now
        if self.limit <= 0:
            return False, self.window_seconds
        with self._lock:
            self._cleanup(now)
            cutoff = now - self.window_seconds
            hits = [ts for ts in self._hits.get(key, []) if ts > cutoff]
            if len(hits) >= self.limit:
                self._hits[key] = hits
                retry_after = max(1, int(hits[0] + self.window_seconds - now + 0.999))
                return False, retry_after
            hits.append(now)
            self._hits[key] = hits
            return True, 0

    def reset(self) -> None:
        with self._lock:
            self._hits.clear()
            self._last_cleanup = 0.0


_LIMITERS: dict[str, RateLimiter] = {}
_REGISTRY_LOCK = Lock()


def get_limiter(name: str, limit: int, window_seconds: int) -> RateLimiter:
    with _REGISTRY_LOCK:
        limiter = _LIMITERS.get(name)
        if limiter is None:
            limiter = RateLimiter(name, limit, window_seconds)
            _LIMITERS[name] = limiter
        return limiter


def reset_state() -> None:
    with _REGISTRY_LOCK:
        limiters = list(_LIMITERS.values())
    for limiter in limiters:
        limiter.reset()


def client_ip(request: Request) -> str:
    for header in settings.TRUSTED_IP_HEADERS:
        value = request.headers.get(header)
        if value:
            first = value.split(",")[0].strip()
            if first:
                return first
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def rate_limit(name: str, limit: int, window_seconds: int, *, on_block=None):
    """
    Build a FastAPI dependency enforcing `limit` requests per window per client IP.

    `on_block(request, ip)` runs when a request is rejected (used by checkout
    to record a rate_limit_hit payment event).
    """
    limiter = get_limiter(name, limit, window_seconds)

    def dependency(request: Request) -> None:
        ip = client_ip(request)
        allowed, retry_after = limiter.check(ip)
        if allowed:
            return
        RATE_LIMIT_BLOCKS_TOTAL.labels(name).inc()
        if on_block is not None:
            on_block(request, ip)
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many requests. Please try again later.",
            headers={"Retry-After": str(retry_after), "X-Error-Code": "rate_limited"},
        )

    return dependency
