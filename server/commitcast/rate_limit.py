# ─────────────────────────────────────────────────────────────────────────────
# Rate limiting — per-identity fixed windows + per-IP flood guard
# ─────────────────────────────────────────────────────────────────────────────
# Two layers:
#   * `limiter` (slowapi): coarse per-IP guard on the HTTP routes.
#   * RateLimitStore: per-identity quota consumed by the orchestrator after
#     authentication. InMemoryRateLimitStore is the process-local backend.
#
# Known limitation: buckets live in an LRU capped at max_tracked_keys. A key
# evicted under pressure starts a fresh window on its next request, so a
# client that waits out eviction gets its quota back early.
# ─────────────────────────────────────────────────────────────────────────────

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from cachetools import Cache, LRUCache  # type: ignore[import-untyped]
from slowapi import Limiter
from slowapi.util import get_remote_address
from starlette.requests import Request

from commitcast.auth import bearer_token

# Key function: rate-limit by client IP (reads the ASGI client address).
limiter = Limiter(key_func=get_remote_address)


def lacks_credential(request: Request) -> bool:
    """slowapi ``exempt_when`` hook: requests the authenticator will reject.

    They are answered 401 by the orchestrator without touching any budget,
    so anonymous traffic cannot exhaust the guard for a shared IP.
    """
    return bearer_token(request.headers.get("authorization")) is None


@dataclass
class RateLimitBucket:
    key: str
    count: int
    window_start: float  # epoch seconds
    limit: int
    window_ms: int

    @property
    def reset_at(self) -> float:
        return self.window_start + self.window_ms / 1000


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    remaining: int
    limit: int
    reset_at: float  # epoch seconds when the current window ends
    retry_after: float = 0.0  # seconds until a denied key may retry

    def headers(self) -> dict[str, str]:
        """X-RateLimit-* headers describing this decision."""
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(int(self.reset_at)),
        }


@runtime_checkable
class RateLimitStore(Protocol):
    """Anything that can hand out one rate-limit decision per call."""

    def consume(self, key: str) -> RateLimitDecision: ...


class InMemoryRateLimitStore:
    """Fixed-window counters keyed by client identity.

    consume() is atomic: the whole read-modify-write happens under one lock,
    so concurrent callers for a key can never collect more than ``limit``
    approvals in a window. The critical section is a single LRU lookup and
    update.
    """

    def __init__(
        self,
        limit: int,
        window_ms: int,
        max_tracked_keys: int = 10_000,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if limit < 1:
            raise ValueError("limit must be >= 1")
        if window_ms < 1:
            raise ValueError("window_ms must be >= 1")
        self.limit = limit
        self.window_ms = window_ms
        self._clock = clock
        self._buckets: LRUCache[str, RateLimitBucket] = LRUCache(maxsize=max_tracked_keys)
        self._lock = threading.Lock()

    def consume(self, key: str) -> RateLimitDecision:
        with self._lock:
            now = self._clock()
            bucket = self._buckets.get(key)

            if bucket is None or now >= bucket.reset_at:
                bucket = RateLimitBucket(
                    key=key,
                    count=1,
                    window_start=now,
                    limit=self.limit,
                    window_ms=self.window_ms,
                )
                self._buckets[key] = bucket
            else:
                bucket.count += 1

            allowed = bucket.count <= self.limit
            return RateLimitDecision(
                allowed=allowed,
                remaining=max(self.limit - bucket.count, 0),
                limit=self.limit,
                reset_at=bucket.reset_at,
                retry_after=0.0 if allowed else max(bucket.reset_at - now, 0.0),
            )

    def peek(self, key: str) -> RateLimitBucket | None:
        """Copy of the bucket for ``key`` without touching counts or recency."""
        with self._lock:
            if key not in self._buckets:
                return None
            # Cache.__getitem__ skips the LRU recency update.
            bucket = Cache.__getitem__(self._buckets, key)
            return RateLimitBucket(**vars(bucket))

    def __len__(self) -> int:
        with self._lock:
            return len(self._buckets)
