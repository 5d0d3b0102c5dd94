"""
In-memory fixed window rate limiting.
"""

import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from utils.error_handling import RateLimitError

logger = logging.getLogger(__name__)


@dataclass
class RateLimitConfig:
    window_seconds: int
    max_requests: int


DEFAULT_LIMITS = {
    "general": RateLimitConfig(15 * 60, 100),
    "auth": RateLimitConfig(15 * 60, 5),
    "payment": RateLimitConfig(60 * 60, 20),
    "email": RateLimitConfig(60 * 60, 50),
    "health": RateLimitConfig(60, 10),
}


@dataclass
class RateLimitResult:
    allowed: bool
    limit: int
    remaining: int
    reset_at: float

    def headers(self) -> Dict[str, str]:
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(int(self.reset_at)),
        }


class RateLimiter:
    """
    Counts requests per (limit name, identifier) inside fixed windows.

    State lives in process memory, so each worker process limits on its own.
    """

    def __init__(
        self,
        limits: Optional[Dict[str, RateLimitConfig]] = None,
        cleanup_interval: float = 300.0,
        clock: Callable[[], float] = time.time
    ):
        self.limits = dict(DEFAULT_LIMITS)
        if limits:
            self.limits.update(limits)
        self.cleanup_interval = cleanup_interval
        self._clock = clock
        self._windows: Dict[str, Dict[str, float]] = {}
        self._lock = threading.Lock()
        self._last_cleanup = clock()

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> 'RateLimiter':
        """Build a limiter from the ``rate_limit`` configuration section."""
        limits = {
            name: RateLimitConfig(int(values["window_seconds"]), int(values["max_requests"]))
            for name, values in (config.get("limits") or {}).items()
        }
        return cls(limits, cleanup_interval=float(config.get("cleanup_interval_seconds", 300)))

    def check(self, limit_name: str, identifier: str) -> RateLimitResult:
        """Count one request and report whether it is allowed."""
        config = self.limits.get(limit_name, self.limits["general"])
        now = self._clock()
        key = f"{limit_name}:{identifier}"

        with self._lock:
            self._maybe_cleanup(now)

            window = self._windows.get(key)
            if window is None or now >= window["reset_at"]:
                window = {"count": 0, "reset_at": now + config.window_seconds}
                self._windows[key] = window

            if window["count"] >= config.max_requests:
                return RateLimitResult(False, config.max_requests, 0, window["reset_at"])

            window["count"] += 1
            remaining = config.max_requests - int(window["count"])
            return RateLimitResult(True, config.max_requests, remaining, window["reset_at"])

    def enforce(self, limit_name: str, identifier: str) -> RateLimitResult:
        """
        Like check(), but raises when the limit is exceeded.

        Raises:
            RateLimitError: With the rate limit headers and Retry-After attached
        """
        result = self.check(limit_name, identifier)
        if not result.allowed:
            retry_after = max(int(math.ceil(result.reset_at - self._clock())), 0)
            headers = result.headers()
            headers["Retry-After"] = str(retry_after)
            logger.warning(f"Rate limit '{limit_name}' exceeded for {identifier}")
            raise RateLimitError(
                "Too many requests. Please try again later.",
                headers=headers,
                details={"retry_after": retry_after},
            )
        return result

    def reset(self) -> None:
        with self._lock:
            self._windows.clear()

    def _maybe_cleanup(self, now: float) -> None:
        if now - self._last_cleanup < self.cleanup_interval:
            return
        expired = [key for key, window in self._windows.items() if now >= window["reset_at"]]
        for key in expired:
            del self._windows[key]
        self._last_cleanup = now


def client_identifier(
    user_id: Optional[str],
    forwarded_for: Optional[str] = None,
    real_ip: Optional[str] = None,
    client_host: Optional[str] = None
) -> str:
    """Identify the caller: the user when signed in, otherwise the client IP."""
    if user_id:
        return f"user:{user_id}"
    ip = None
    if forwarded_for:
        ip = forwarded_for.split(",")[0].strip()
    ip = ip or real_ip or client_host or "unknown"
    return f"ip:{ip}"
