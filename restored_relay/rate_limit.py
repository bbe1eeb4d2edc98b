"""Per-address sliding-window rate limiting."""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable

from fastapi import Request

from restored_relay.errors import RateLimitExceeded

LOGGER = logging.getLogger(__name__)

API_LIMIT_MESSAGE = "Too many requests from this IP, please try again later."
GENERATION_LIMIT_MESSAGE = (
    "AI generation rate limit exceeded. Please wait before trying again."
)

Clock = Callable[[], float]


@dataclass(frozen=True)
class RateLimitDecision:
    """Outcome of a single :meth:`SlidingWindowLimiter.hit` call."""

    allowed: bool
    limit: int
    remaining: int
    reset_after: float

    def headers(self) -> dict[str, str]:
        return {
            "RateLimit-Limit": str(self.limit),
            "RateLimit-Remaining": str(self.remaining),
            "RateLimit-Reset": str(max(0, int(self.reset_after + 0.999))),
        }


class SlidingWindowLimiter:
    """Count hits per key inside a trailing window of ``window_seconds``.

    Rejected hits are not recorded, so a caller that keeps hammering the
    limiter regains access as soon as its oldest accepted hit ages out.
    """

    def __init__(
        self,
        name: str,
        max_requests: int,
        window_seconds: float,
        message: str,
        clock: Clock = time.monotonic,
    ) -> None:
        if max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self.name = name
        self.max_requests = max_requests
        self.window_seconds = float(window_seconds)
        self.message = message
        self._clock = clock
        self._hits: dict[str, deque[float]] = {}
        self._lock = threading.Lock()
        self._last_sweep = clock()

    def hit(self, key: str) -> RateLimitDecision:
        now = self._clock()
        cutoff = now - self.window_seconds
        with self._lock:
            self._maybe_sweep(now)
            hits = self._hits.setdefault(key, deque())
            while hits and hits[0] <= cutoff:
                hits.popleft()

            if len(hits) >= self.max_requests:
                return RateLimitDecision(
                    allowed=False,
                    limit=self.max_requests,
                    remaining=0,
                    reset_after=hits[0] + self.window_seconds - now,
                )

            hits.append(now)
            return RateLimitDecision(
                allowed=True,
                limit=self.max_requests,
                remaining=self.max_requests - len(hits),
                reset_after=hits[0] + self.window_seconds - now,
            )

    def check(self, key: str) -> RateLimitDecision:
        """Record a hit and raise :class:`RateLimitExceeded` when over the limit."""

        decision = self.hit(key)
        if not decision.allowed:
            LOGGER.warning(
                "rate limit exceeded",
                extra={"limiter": self.name, "ip": key, "retry_after": decision.reset_after},
            )
            raise RateLimitExceeded(self.message, decision.reset_after)
        return decision

    def reset(self, key: str | None = None) -> None:
        with self._lock:
            if key is None:
                self._hits.clear()
            else:
                self._hits.pop(key, None)

    def tracked_keys(self) -> int:
        with self._lock:
            return len(self._hits)

    def _maybe_sweep(self, now: float) -> None:
        # Caller holds the lock.
        if now - self._last_sweep < self.window_seconds:
            return
        cutoff = now - self.window_seconds
        stale = [key for key, hits in self._hits.items() if not hits or hits[-1] <= cutoff]
        for key in stale:
            del self._hits[key]
        self._last_sweep = now


def client_address(request: Request, trust_proxy: bool = False) -> str:
    """Return the address used as the rate-limit key for ``request``."""

    if trust_proxy:
        forwarded = request.headers.get("X-Forwarded-For", "")
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    if request.client and request.client.host:
        return request.client.host
    return "unknown"
