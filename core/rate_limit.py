# core/rate_limit.py
from __future__ import annotations
import time
from dataclasses import dataclass
from typing import Callable, Dict

from fastapi import Request

from core.errors import ErrorKind, ServiceError

@dataclass
class Bucket:
    tokens: float
    last: float

class TokenBucketLimiter:
    """
    Token bucket per key (client IP): 'rate' tokens per 'per_seconds',
    burst up to 'capacity'.

    Only touched from the event loop, so no lock: allow() never awaits.
    """
    def __init__(
        self,
        rate: float,
        per_seconds: float,
        capacity: float,
        clock: Callable[[], float] = time.monotonic,
        max_keys: int = 10_000,
    ):
        self.rate = rate
        self.per_seconds = per_seconds
        self.capacity = capacity
        self.clock = clock
        self.max_keys = max_keys
        self._buckets: Dict[str, Bucket] = {}

    def allow(self, key: str, cost: float = 1.0) -> bool:
        now = self.clock()
        b = self._buckets.get(key)
        if b is None:
            if len(self._buckets) >= self.max_keys:
                self._prune(now)
            b = Bucket(tokens=self.capacity, last=now)
            self._buckets[key] = b

        # refill
        elapsed = now - b.last
        b.tokens = min(self.capacity, b.tokens + (elapsed / self.per_seconds) * self.rate)
        b.last = now

        if b.tokens >= cost:
            b.tokens -= cost
            return True
        return False

    def check(self, key: str) -> None:
        if not self.allow(key):
            raise ServiceError(ErrorKind.RATE_LIMITED, "Demasiados intentos. Intente de nuevo en unos momentos.")

    def _prune(self, now: float) -> None:
        # Drop buckets that have refilled completely; they carry no state
        full_after = self.per_seconds * self.capacity / self.rate
        stale = [k for k, b in self._buckets.items() if now - b.last >= full_after]
        for k in stale:
            del self._buckets[k]


def client_key(request: Request, scope: str) -> str:
    ip = request.client.host if request.client else "unknown"
    return f"{scope}:{ip}"
