"""Tests for the password policy, throttles and the sliding window limiter."""
import pytest

from oidc_provider.errors import RateLimited, WeakPassword
from oidc_provider.policies import PasswordPolicy, Throttle
from oidc_provider.rate_limit import SlidingWindowLimiter


class FakeMonotonic:
    def __init__(self):
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def test_password_policy_bounds():
    policy = PasswordPolicy(min_length=8, max_length=16)
    policy.check("12345678")
    with pytest.raises(WeakPassword):
        policy.check("1234567")
    with pytest.raises(WeakPassword):
        policy.check("x" * 17)


def test_limiter_window():
    clock = FakeMonotonic()
    limiter = SlidingWindowLimiter(2, window_seconds=60, clock=clock)
    assert limiter.check_and_consume("1.2.3.4") == (True, None)
    clock.now += 10
    assert limiter.check_and_consume("1.2.3.4") == (True, None)
    allowed, retry_after = limiter.check_and_consume("1.2.3.4")
    assert not allowed
    assert retry_after == 50
    clock.now += 51
    assert limiter.check_and_consume("1.2.3.4") == (True, None)


def test_limiter_forgets_idle_keys():
    clock = FakeMonotonic()
    limiter = SlidingWindowLimiter(5, window_seconds=60, clock=clock)
    for i in range(100):
        limiter.check_and_consume(f"10.0.0.{i}")
    assert len(limiter) == 100
    clock.now += 61
    limiter.check_and_consume("10.0.1.1")
    assert len(limiter) == 1


def test_limiter_disabled():
    limiter = SlidingWindowLimiter(0)
    for _ in range(10):
        assert limiter.check_and_consume("k") == (True, None)


def test_throttle_raises_and_resets():
    throttle = Throttle("login", 1)
    throttle.hit("1.2.3.4")
    with pytest.raises(RateLimited) as exc_info:
        throttle.hit("1.2.3.4")
    assert exc_info.value.retry_after >= 1
    assert exc_info.value.status_code == 429
    throttle.hit("5.6.7.8")
    throttle.reset()
    throttle.hit("1.2.3.4")
