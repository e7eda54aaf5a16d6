"""Tests for wildcheck.core.rate_limiter."""

from __future__ import annotations

import time

import pytest

from wildcheck.core.rate_limiter import AdaptiveRateLimiter, WindowQuota


class FakeClock:
    def __init__(self, now: float = 100.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


# --- AdaptiveRateLimiter ---

def test_initial_qps():
    limiter = AdaptiveRateLimiter(initial_qps=10.0)
    assert limiter.current_qps == 10.0
    assert limiter.is_throttled is False


def test_backoff_on_timeout():
    limiter = AdaptiveRateLimiter(initial_qps=10.0, backoff_factor=0.5)
    limiter.record_timeout()
    assert limiter.current_qps == 5.0
    assert limiter.is_throttled is True


def test_backoff_never_below_min_qps():
    limiter = AdaptiveRateLimiter(initial_qps=10.0, min_qps=2.0, backoff_factor=0.1)
    for _ in range(20):
        limiter.record_timeout()
    assert limiter.current_qps == 2.0


def test_recovery_caps_at_initial_qps():
    limiter = AdaptiveRateLimiter(initial_qps=10.0, backoff_factor=0.5, recovery_factor=2.0)
    limiter.record_timeout()
    for _ in range(5):
        limiter.record_success()
    assert limiter.current_qps == 10.0
    assert limiter.is_throttled is False


def test_unlimited_ignores_feedback():
    limiter = AdaptiveRateLimiter(initial_qps=0)
    limiter.record_timeout()
    assert limiter.current_qps == 0
    assert limiter.is_throttled is False


@pytest.mark.asyncio
async def test_acquire_respects_rate():
    limiter = AdaptiveRateLimiter(initial_qps=50.0)
    start = time.monotonic()
    await limiter.acquire()
    await limiter.acquire()
    # 50 q/s means a 20 ms interval between slots
    assert time.monotonic() - start >= 0.01


@pytest.mark.asyncio
async def test_acquire_unlimited_does_not_wait():
    limiter = AdaptiveRateLimiter(initial_qps=0)
    start = time.monotonic()
    for _ in range(100):
        await limiter.acquire()
    assert time.monotonic() - start < 0.5


# --- WindowQuota ---

def test_quota_exhausts_within_window():
    clock = FakeClock()
    quota = WindowQuota(3, clock=clock)
    assert quota.remaining() == 3
    assert all(quota.consume() for _ in range(3))
    assert quota.consume() is False
    assert quota.remaining() == 0


def test_quota_resets_on_next_window():
    clock = FakeClock(100.2)
    quota = WindowQuota(2, clock=clock)
    quota.consume()
    quota.consume()
    assert quota.seconds_until_reset() == pytest.approx(0.8)
    clock.now = 101.05
    assert quota.remaining() == 2
    assert quota.consume() is True


def test_quota_limit_is_at_least_one():
    assert WindowQuota(0).limit == 1
