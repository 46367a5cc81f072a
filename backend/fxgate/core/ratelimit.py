"""Per-client fixed-window rate limiting.

Each key (the client IP) gets ``points`` requests per ``duration`` seconds.
A key that spends more than its points is blocked for ``block_duration``
seconds, after which it starts a fresh window.
"""
import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import Dict, Optional

from fastapi import Request

from fxgate.core.errors import RateLimitExceeded

logger = logging.getLogger(__name__)


@dataclass
class _Window:
    started_at: float
    consumed: int = 0
    blocked_until: float = 0.0


class FixedWindowRateLimiter:
    """In-memory limiter keyed by an arbitrary string."""

    def __init__(self, points: int = 100, duration: float = 60, block_duration: float = 300):
        self.points = points
        self.duration = duration
        self.block_duration = block_duration
        self._windows: Dict[str, _Window] = {}
        self._lock = threading.Lock()

    def consume(self, key: str, now: Optional[float] = None) -> int:
        """Spend one point for *key* and return the points left.

        Raises:
            RateLimitExceeded: when *key* is over budget or blocked.  The
                exception's ``retry_after`` is whole seconds, at least 1.
        """
        now = time.monotonic() if now is None else now
        with self._lock:
            window = self._windows.get(key)

            if window is not None and window.blocked_until > now:
                raise RateLimitExceeded(self._retry_after(window.blocked_until - now))

            if window is None or now - window.started_at >= self.duration or window.blocked_until:
                window = _Window(started_at=now)
                self._windows[key] = window

            window.consumed += 1
            if window.consumed > self.points:
                window.blocked_until = now + self.block_duration
                logger.warning("Rate limit exceeded for %s, blocked for %ss", key, self.block_duration)
                raise RateLimitExceeded(self._retry_after(self.block_duration))

            return self.points - window.consumed

    def reset(self, key: Optional[str] = None) -> None:
        with self._lock:
            if key is None:
                self._windows.clear()
            else:
                self._windows.pop(key, None)

    def prune(self, now: Optional[float] = None) -> int:
        """Drop windows that are neither current nor blocked."""
        now = time.monotonic() if now is None else now
        with self._lock:
            stale = [
                key for key, window in self._windows.items()
                if window.blocked_until <= now and now - window.started_at >= self.duration
            ]
            for key in stale:
                del self._windows[key]
        return len(stale)

    def _retry_after(self, seconds: float) -> int:
        return max(1, min(math.ceil(seconds), int(math.ceil(self.block_duration))))


def client_key(request: Request) -> str:
    """Identify the caller by IP, honouring a proxy's X-Forwarded-For."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def enforce_rate_limit(request: Request) -> None:
    """FastAPI dependency applying the app's limiter to the caller."""
    limiter: Optional[FixedWindowRateLimiter] = getattr(request.app.state, "rate_limiter", None)
    if limiter is None:
        return
    limiter.consume(client_key(request))
