"""Admission throttle keyed by (client address, user id)."""

from __future__ import annotations

import json
import logging
import math
import threading
import time
from collections import deque
from typing import Callable

from fastapi import Request

from core.errors import RateLimited

logger = logging.getLogger(__name__)


class SlidingWindowLimiter:
    """At most `limit` hits per key within any `window` seconds."""

    def __init__(self, limit: int, window: float, clock: Callable[[], float] = time.monotonic):
        self.limit = limit
        self.window = window
        self._clock = clock
        self._hits: dict[str, deque[float]] = {}
        self._last_prune = clock()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        """Number of keys currently tracked."""
        with self._lock:
            return len(self._hits)

    def hit(self, key: str) -> int:
        """Record a hit; return the remaining budget or raise RateLimited."""
        now = self._clock()
        with self._lock:
            if now - self._last_prune >= self.window:
                self._prune(now)
            hits = self._hits.setdefault(key, deque())
            self._trim(hits, now)
            if len(hits) >= self.limit:
                retry_after = max(1, math.ceil(hits[0] + self.window - now))
                logger.warning("Rate limit exceeded for %s", key)
                raise RateLimited(retry_after)
            hits.append(now)
            return self.limit - len(hits)

    def _trim(self, hits: deque[float], now: float) -> None:
        while hits and hits[0] <= now - self.window:
            hits.popleft()

    def _prune(self, now: float) -> None:
        # Drop callers with no hit inside the current window.
        for key in list(self._hits):
            hits = self._hits[key]
            self._trim(hits, now)
            if not hits:
                del self._hits[key]
        self._last_prune = now

    def reset(self) -> None:
        with self._lock:
            self._hits.clear()


async def _user_id(request: Request) -> str | None:
    user_id = request.path_params.get("user_id") or request.query_params.get("user_id")
    if user_id:
        return user_id
    body = await request.body()
    if not body:
        return None
    try:
        payload = json.loads(body)
    except ValueError:
        return None
    return payload.get("user_id") if isinstance(payload, dict) else None


async def throttle_key(request: Request) -> str:
    client_ip = request.client.host if request.client else "unknown"
    return f"{client_ip}-{await _user_id(request) or 'anonymous'}"


async def standard_limit(request: Request) -> None:
    request.app.state.standard_limiter.hit(await throttle_key(request))


async def sensitive_limit(request: Request) -> None:
    key = await throttle_key(request)
    request.app.state.sensitive_limiter.hit(f"{key}-sensitive")
