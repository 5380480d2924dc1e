"""Tests for the token-bucket limiter used by login and refresh."""

import pytest

from core.errors import ErrorKind, ServiceError
from core.rate_limit import TokenBucketLimiter


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def test_burst_then_refill():
    clock = FakeClock()
    limiter = TokenBucketLimiter(rate=5, per_seconds=60, capacity=2, clock=clock)

    assert limiter.allow("login:1.2.3.4")
    assert limiter.allow("login:1.2.3.4")
    assert not limiter.allow("login:1.2.3.4")

    clock.now += 13  # a little over one token back at 5/min
    assert limiter.allow("login:1.2.3.4")
    assert not limiter.allow("login:1.2.3.4")


def test_keys_are_independent():
    limiter = TokenBucketLimiter(rate=1, per_seconds=60, capacity=1, clock=FakeClock())

    assert limiter.allow("login:a")
    assert limiter.allow("login:b")
    assert not limiter.allow("login:a")


def test_check_raises_rate_limited():
    limiter = TokenBucketLimiter(rate=1, per_seconds=60, capacity=1, clock=FakeClock())
    limiter.check("refresh:a")

    with pytest.raises(ServiceError) as exc_info:
        limiter.check("refresh:a")

    assert exc_info.value.kind is ErrorKind.RATE_LIMITED
    assert exc_info.value.status_code == 429


def test_full_buckets_are_pruned():
    clock = FakeClock()
    limiter = TokenBucketLimiter(rate=1, per_seconds=1, capacity=1, clock=clock, max_keys=2)
    limiter.allow("a")
    limiter.allow("b")

    clock.now += 5
    limiter.allow("c")

    assert set(limiter._buckets) == {"c"}
