"""
Policy hooks: password rules and brute-force throttles. Limits come from Settings; a limit <= 0 disables.
"""
import logging

from oidc_provider.errors import RateLimited, WeakPassword
from oidc_provider.rate_limit import SlidingWindowLimiter

logger = logging.getLogger(__name__)


class PasswordPolicy:
    def __init__(self, min_length: int = 8, max_length: int = 128):
        self.min_length = min_length
        self.max_length = max_length

    def check(self, password: str) -> None:
        """Raise WeakPassword if the password is rejected."""
        if not password or len(password) < self.min_length:
            raise WeakPassword(f"Password must be at least {self.min_length} characters")
        if len(password) > self.max_length:
            raise WeakPassword(f"Password must be at most {self.max_length} characters")


class Throttle:
    """Named sliding-window throttle; raises RateLimited when a key goes over its limit."""

    def __init__(self, name: str, per_minute: int):
        self.name = name
        self._limiter = SlidingWindowLimiter(per_minute, window_seconds=60)

    def hit(self, key: str | None) -> None:
        allowed, retry_after = self._limiter.check_and_consume(key or "unknown")
        if not allowed:
            logger.warning("%s rate limit exceeded for %s", self.name, key)
            raise RateLimited(retry_after, f"Too many {self.name} attempts")

    def reset(self) -> None:
        self._limiter.reset()
