"""
Ventanilla Única - Rate Limiting
================================
Sliding-window request limiter keyed by client IP.

The request log lives in a store object handed to the limiter, so a shared
store (e.g. Redis) can replace the in-memory one when running more than one
process.
"""

import math
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Mapping, Optional


@dataclass
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_in_seconds: int


class InMemoryRateLimitStore:
    """Per-process request log: key -> request timestamps (seconds)."""

    def __init__(self):
        self._log: Dict[str, List[float]] = {}

    def get(self, key: str) -> List[float]:
        return list(self._log.get(key, []))

    def set(self, key: str, timestamps: List[float]) -> None:
        self._log[key] = timestamps

    def prune(self, cutoff: float) -> None:
        """Forget keys whose newest request is at or before `cutoff`."""
        stale = [key for key, timestamps in self._log.items() if not timestamps or timestamps[-1] <= cutoff]
        for key in stale:
            del self._log[key]

    def __len__(self) -> int:
        return len(self._log)


class RateLimiter:
    """
    Allows at most `limit` requests per `window_seconds` for each key.
    """

    def __init__(
        self,
        limit: int,
        window_seconds: float,
        store: Optional[InMemoryRateLimitStore] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.limit = limit
        self.window_seconds = window_seconds
        self.store = store if store is not None else InMemoryRateLimitStore()
        self.clock = clock
        self._last_prune = clock()

    def check(self, key: str) -> RateLimitResult:
        """Record a request for `key` if allowed and report the remaining budget."""
        now = self.clock()
        window_start = now - self.window_seconds

        # Sweep idle keys once per window
        if now - self._last_prune >= self.window_seconds:
            self.store.prune(window_start)
            self._last_prune = now

        recent = [ts for ts in self.store.get(key) if ts > window_start]

        if len(recent) >= self.limit:
            oldest = recent[0] if recent else now
            reset_in = max(self.window_seconds - (now - oldest), 0)
            self.store.set(key, recent)
            return RateLimitResult(
                allowed=False,
                remaining=0,
                reset_in_seconds=math.ceil(reset_in),
            )

        recent.append(now)
        self.store.set(key, recent)

        return RateLimitResult(
            allowed=True,
            remaining=max(self.limit - len(recent), 0),
            reset_in_seconds=math.ceil(self.window_seconds),
        )


def get_client_ip(headers: Mapping[str, str]) -> str:
    """Resolve the caller's IP from proxy headers."""
    forwarded_for = headers.get("x-forwarded-for")
    if forwarded_for:
        first_ip = forwarded_for.split(",")[0].strip()
        if first_ip:
            return first_ip

    real_ip = (headers.get("x-real-ip") or "").strip()
    if real_ip:
        return real_ip

    return "unknown"
