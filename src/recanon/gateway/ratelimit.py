"""Fixed-window rate limiting for the Gateway.

The store is injected so the in-process table can be replaced by a shared
store when the Gateway runs as several processes. The in-memory store is
best-effort and per process.

Client identity comes from forwarded-address headers, which a direct caller
can forge; requests without either header share the "unknown" bucket.
"""

import asyncio
import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Mapping, Optional, Protocol

logger = logging.getLogger(__name__)

UNKNOWN_CLIENT = "unknown"


@dataclass(frozen=True)
class RateLimitRecord:
    count: int
    reset_at: float


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    remaining: int
    retry_after: int  # seconds; 0 when allowed


class RateLimitStore(Protocol):
    def increment(self, key: str, now: float, window_seconds: float) -> RateLimitRecord:
        """Count one request for ``key``, opening a new window if the old one expired."""
        ...

    def sweep_expired(self, now: float) -> int:
        """Delete records whose window has ended; return how many were removed."""
        ...


class InMemoryRateLimitStore:
    """Process-local store; increment and sweep are serialized by a lock."""

    def __init__(self):
        self._records: Dict[str, RateLimitRecord] = {}
        self._lock = threading.Lock()

    def increment(self, key: str, now: float, window_seconds: float) -> RateLimitRecord:
        with self._lock:
            record = self._records.get(key)
            if record is None or now >= record.reset_at:
                record = RateLimitRecord(count=1, reset_at=now + window_seconds)
            else:
                record = RateLimitRecord(count=record.count + 1, reset_at=record.reset_at)
            self._records[key] = record
            return record

    def sweep_expired(self, now: float) -> int:
        with self._lock:
            expired = [k for k, r in self._records.items() if now > r.reset_at]
            for key in expired:
                del self._records[key]
            return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)


class RateLimiter:
    """``limit`` requests per identity per ``window_seconds``."""

    def __init__(
        self,
        store: RateLimitStore,
        limit: int,
        window_seconds: float,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.store = store
        self.limit = limit
        self.window_seconds = window_seconds
        self.clock = clock or time.monotonic

    def check(self, identity: str) -> RateLimitDecision:
        now = self.clock()
        record = self.store.increment(identity, now, self.window_seconds)
        if record.count > self.limit:
            retry_after = max(1, math.ceil(record.reset_at - now))
            return RateLimitDecision(allowed=False, remaining=0, retry_after=retry_after)
        return RateLimitDecision(
            allowed=True,
            remaining=max(0, self.limit - record.count),
            retry_after=0,
        )

    def sweep(self) -> int:
        return self.store.sweep_expired(self.clock())


def client_identity(headers: Mapping[str, str]) -> str:
    """First X-Forwarded-For entry, else X-Real-IP, else "unknown"."""
    forwarded = headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = headers.get("x-real-ip")
    if real_ip and real_ip.strip():
        return real_ip.strip()
    return UNKNOWN_CLIENT


async def run_sweeper(limiter: RateLimiter, interval_seconds: float) -> None:
    """Periodically drop expired records until cancelled."""
    while True:
        await asyncio.sleep(interval_seconds)
        removed = limiter.sweep()
        if removed:
            logger.debug("Rate limit sweep removed %d expired record(s)", removed)
