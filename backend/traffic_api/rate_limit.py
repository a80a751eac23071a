from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from threading import Lock

from fastapi import HTTPException, Request

from .api_keys import api_key_from_request
from .settings import settings


@dataclass
class _Window:
    started_at: float
    count: int = 0


class FixedWindowRateLimiter:
    """Per-client request counter reset every ``window_s`` seconds."""

    def __init__(
        self,
        *,
        max_requests: int | None = None,
        window_s: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_requests = int(settings.rate_limit_max_requests if max_requests is None else max_requests)
        self.window_s = float(settings.rate_limit_window_s if window_s is None else window_s)
        self._clock = clock
        self._lock = Lock()
        self._windows: dict[str, _Window] = {}

    def hit(self, client_id: str) -> tuple[bool, int, float]:
        """Count one request; returns ``(allowed, remaining, seconds_until_reset)``."""
        now = self._clock()
        with self._lock:
            window = self._windows.get(client_id)
            if window is None or now - window.started_at >= self.window_s:
                # Only new windows grow the table, so expired ones are dropped here.
                self._drop_expired(now)
                window = _Window(started_at=now)
                self._windows[client_id] = window
            window.count += 1
            remaining = max(0, self.max_requests - window.count)
            reset_in = max(0.0, self.window_s - (now - window.started_at))
            return window.count <= self.max_requests, remaining, reset_in

    def sweep(self) -> int:
        with self._lock:
            return self._drop_expired(self._clock())

    def _drop_expired(self, now: float) -> int:
        expired = [cid for cid, window in self._windows.items() if now - window.started_at >= self.window_s]
        for cid in expired:
            del self._windows[cid]
        return len(expired)

    def __len__(self) -> int:
        return len(self._windows)

    def reset(self) -> None:
        with self._lock:
            self._windows.clear()


def client_identity(request: Request) -> str:
    """Known API keys share one budget per key; anything else is counted per client IP."""
    key = api_key_from_request(request)
    if key and key in settings.api_key_set():
        return f"key:{key}"
    host = request.client.host if request.client else "unknown"
    return f"ip:{host}"


def enforce_rate_limit(request: Request) -> None:
    if not settings.rate_limit_enabled:
        return
    limiter: FixedWindowRateLimiter | None = getattr(request.app.state, "rate_limiter", None)
    if limiter is None:
        limiter = FixedWindowRateLimiter()
        request.app.state.rate_limiter = limiter
    allowed, _, reset_in = limiter.hit(client_identity(request))
    if not allowed:
        raise HTTPException(
            status_code=429,
            detail={"error": "Too many requests", "retryAfterS": round(reset_in)},
            headers={"Retry-After": str(max(1, round(reset_in)))},
        )
