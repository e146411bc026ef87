# caredispatch/infra/rate_limiter.py
"""
Sliding-window limits for the public intake surface.

Two instances run in the API: one per client IP on every public route, and
one per reporter phone on POST /complaints so a single number cannot flood
volunteers with dispatches. State is per process.
"""
from __future__ import annotations
import time
from collections import defaultdict, deque
from threading import Lock
from typing import Optional

from fastapi import HTTPException, Request, status

from caredispatch.infra.logging_config import get_logger
from caredispatch.infra.metrics import inc_counter

logger = get_logger(__name__)

UNLIMITED_PATHS = frozenset({"/health", "/ready"})


def _mask_key(key: str) -> str:
    # Keys are client IPs or reporter phone numbers
    return key[:4] + "***" if len(key) > 4 else "***"


class InMemoryRateLimiter:
    def __init__(self, max_requests: int, window_seconds: int = 60, name: str = "default"):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.name = name
        self._hits: dict[str, deque[float]] = defaultdict(deque)
        self._last_sweep = time.monotonic()
        self._lock = Lock()

    def _expire(self, hits: deque, now: float) -> None:
        while hits and hits[0] <= now - self.window_seconds:
            hits.popleft()

    def _sweep(self, now: float) -> None:
        # Keys are client supplied (phone numbers), so idle ones must not pile up
        for key in [k for k, hits in self._hits.items() if not hits or hits[-1] <= now - self.window_seconds]:
            del self._hits[key]
        self._last_sweep = now

    def is_allowed(self, key: str) -> tuple[bool, Optional[int]]:
        """
        Record a hit for ``key`` unless it is already at the limit.

        Returns:
            (allowed, retry_after_seconds); retry_after is None when allowed
        """
        now = time.monotonic()

        with self._lock:
            if now - self._last_sweep >= self.window_seconds:
                self._sweep(now)

            hits = self._hits[key]
            self._expire(hits, now)

            if len(hits) < self.max_requests:
                hits.append(now)
                return True, None

            # Rejected hits are not recorded, so a client that keeps retrying
            # is let back in once its oldest accepted hit leaves the window
            retry_after = int(hits[0] + self.window_seconds - now) + 1 if hits else self.window_seconds

        logger.warning(
            f"Rate limit '{self.name}' exceeded for key={_mask_key(key)} (retry in {retry_after}s)"
        )
        inc_counter("rate_limited_total", limiter=self.name)
        return False, retry_after

    def check(self, key: str) -> None:
        """Raise 429 with Retry-After when ``key`` is over the limit."""
        allowed, retry_after = self.is_allowed(key)
        if not allowed:
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail="Rate limit exceeded",
                headers={"Retry-After": str(retry_after)},
            )


class RateLimitDependency:
    """FastAPI dependency limiting requests per client IP (first X-Forwarded-For hop when present)."""

    def __init__(self, limiter: InMemoryRateLimiter):
        self.limiter = limiter

    async def __call__(self, request: Request) -> None:
        if request.url.path in UNLIMITED_PATHS:
            return

        forwarded_for = request.headers.get("X-Forwarded-For")
        if forwarded_for:
            client_ip = forwarded_for.split(",")[0].strip()
        else:
            client_ip = request.client.host if request.client else "unknown"

        self.limiter.check(client_ip)
