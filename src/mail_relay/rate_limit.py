# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""In-memory sliding-window rate limiter for the HTTP API.

Requests are counted per client key inside a rolling window. The limiter is
process-local: counters are lost on restart and are not shared between
workers.

Example:
    Checking a client before serving it::

        limiter = SlidingWindowRateLimiter(window_ms=60000, max_requests=30)
        retry_after = await limiter.hit(client_key(request))
        if retry_after is not None:
            ...  # reject with 429, Retry-After: retry_after
"""

from __future__ import annotations

import asyncio
import math
import time
from collections import deque
from collections.abc import Callable

from fastapi import Request

from .logger import get_logger

logger = get_logger("RateLimiter")

CLIENT_IP_HEADERS = ("cf-connecting-ip", "x-real-ip")


def client_key(request: Request) -> str:
    """Identify the caller, preferring headers set by trusted proxies."""
    for header in CLIENT_IP_HEADERS:
        value = request.headers.get(header)
        if value and value.strip():
            return value.strip()
    if request.client is not None and request.client.host:
        return request.client.host
    return "unknown"


class SlidingWindowRateLimiter:
    """Per-key sliding-window limiter.

    Attributes:
        window: Window length in seconds.
        max_requests: Requests allowed per key inside one window. Zero or a
            negative value disables limiting.
    """

    def __init__(
        self,
        window_ms: int = 60000,
        max_requests: int = 30,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.window = window_ms / 1000.0
        self.max_requests = max_requests
        self._clock = clock
        self._hits: dict[str, deque[float]] = {}
        self._next_sweep = 0.0
        self._lock = asyncio.Lock()

    @property
    def enabled(self) -> bool:
        return self.max_requests > 0 and self.window > 0

    def _prune(self, key: str, now: float) -> deque[float]:
        hits = self._hits.get(key)
        if hits is None:
            return deque()
        cutoff = now - self.window
        while hits and hits[0] <= cutoff:
            hits.popleft()
        if not hits:
            del self._hits[key]
        return hits

    def _sweep(self, now: float) -> None:
        """Drop clients whose newest request has left the window."""
        if now < self._next_sweep:
            return
        self._next_sweep = now + self.window
        cutoff = now - self.window
        for key in [k for k, hits in self._hits.items() if not hits or hits[-1] <= cutoff]:
            del self._hits[key]

    async def hit(self, key: str) -> int | None:
        """Count a request for ``key``.

        Returns:
            None when the request is allowed, otherwise the number of whole
            seconds until the oldest counted request leaves the window.
        """
        if not self.enabled:
            return None
        async with self._lock:
            now = self._clock()
            self._sweep(now)
            hits = self._prune(key, now)
            if len(hits) >= self.max_requests:
                retry_after = max(1, math.ceil(hits[0] + self.window - now))
                logger.warning("Rate limit exceeded for %s (retry in %ds)", key, retry_after)
                return retry_after
            hits.append(now)
            self._hits[key] = hits
            return None

    async def reset(self, key: str | None = None) -> None:
        async with self._lock:
            if key is None:
                self._hits.clear()
            else:
                self._hits.pop(key, None)
