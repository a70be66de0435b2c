import logging
import math
import threading
import time
from collections import deque
from datetime import timedelta
from typing import Callable, Tuple

from repositories.base import RateLimitRepository
from utils.audit import mask_email
from utils.clock import utcnow
from utils.errors import OtpCooldownError, RateLimitError

logger = logging.getLogger(__name__)


def _seconds_until(later, now) -> int:
    return max(int(math.ceil((later - now).total_seconds())), 1)


class RateLimiter:
    """Per-email OTP cooldown and per-key fixed windows, kept in a store."""

    COOLDOWN_PREFIX = "otp_cooldown:"

    def __init__(self, repository: RateLimitRepository, otp_cooldown_seconds: int = 60, clock: Callable = utcnow):
        self.repository = repository
        self.otp_cooldown_seconds = otp_cooldown_seconds
        self.clock = clock

    def acquire_otp_cooldown(self, email: str) -> None:
        now = self.clock()
        reset_at = now + timedelta(seconds=self.otp_cooldown_seconds)
        active = self.repository.acquire_window(self.COOLDOWN_PREFIX + email, now, reset_at)
        if active is not None:
            retry_after = _seconds_until(active.reset_at, now)
            logger.info("OTP cooldown active for %s (%ss left)", mask_email(email), retry_after)
            raise OtpCooldownError(retry_after)

    def release_otp_cooldown(self, email: str) -> None:
        self.repository.delete(self.COOLDOWN_PREFIX + email)

    def check_and_increment(self, key: str, max_requests: int, window_seconds: int) -> Tuple[bool, int]:
        """
        Returns (allowed, retry_after_seconds).
        Simple fixed window per key.
        """
        now = self.clock()
        record = self.repository.hit(key, now, now + timedelta(seconds=window_seconds))
        if record.count > max_requests:
            return False, _seconds_until(record.reset_at, now)
        return True, 0

    def enforce(self, key: str, max_requests: int, window_seconds: int) -> None:
        allowed, retry_after = self.check_and_increment(key, max_requests, window_seconds)
        if not allowed:
            prefix = key.split(":", 1)[0]
            logger.warning("Rate limit hit on %s (retry after %ss)", prefix, retry_after)
            raise RateLimitError(retry_after)

    def cleanup_expired(self) -> int:
        try:
            count = self.repository.delete_expired(self.clock())
        except Exception:
            logger.exception("Failed to clean up expired rate limit records")
            return 0
        if count:
            logger.debug("Removed %d expired rate limit records", count)
        return count


class SlidingWindowLimiter:
    """
    Process-wide cap of ``max_requests`` in any trailing ``window_seconds``.
    Timestamps come from a monotonic clock.
    """

    def __init__(self, max_requests: int, window_seconds: float, clock: Callable[[], float] = time.monotonic):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.clock = clock
        self._hits = deque()
        self._mutex = threading.Lock()

    def hit(self) -> Tuple[bool, int]:
        now = self.clock()
        with self._mutex:
            horizon = now - self.window_seconds
            while self._hits and self._hits[0] <= horizon:
                self._hits.popleft()

            if len(self._hits) >= self.max_requests:
                retry_after = max(int(math.ceil(self._hits[0] + self.window_seconds - now)), 1)
                return False, retry_after

            self._hits.append(now)
            return True, 0
