import pytest

from repositories import MemoryRateLimitRepository
from security.rate_limit import RateLimiter, SlidingWindowLimiter
from utils.errors import ErrorCode, OtpCooldownError, RateLimitError


@pytest.fixture
def limiter(clock):
    return RateLimiter(MemoryRateLimitRepository(), otp_cooldown_seconds=60, clock=clock)


class Ticker:
    def __init__(self):
        self.t = 0.0

    def __call__(self):
        return self.t


def test_cooldown_blocks_second_request(limiter, clock):
    limiter.acquire_otp_cooldown("a@b.com")

    clock.advance(seconds=20)
    with pytest.raises(OtpCooldownError) as exc:
        limiter.acquire_otp_cooldown("a@b.com")

    assert exc.value.code == ErrorCode.OTP_COOLDOWN_ACTIVE
    assert exc.value.status_code == 429
    assert exc.value.retry_after == 40
    assert exc.value.details == {"retryAfter": 40}


def test_cooldown_is_per_email(limiter):
    limiter.acquire_otp_cooldown("a@b.com")
    limiter.acquire_otp_cooldown("c@d.com")


def test_cooldown_expires(limiter, clock):
    limiter.acquire_otp_cooldown("a@b.com")
    clock.advance(seconds=60)
    limiter.acquire_otp_cooldown("a@b.com")


def test_blocked_attempt_does_not_extend_cooldown(limiter, clock):
    limiter.acquire_otp_cooldown("a@b.com")
    clock.advance(seconds=59)
    with pytest.raises(OtpCooldownError):
        limiter.acquire_otp_cooldown("a@b.com")
    clock.advance(seconds=1)
    limiter.acquire_otp_cooldown("a@b.com")


def test_release_cooldown(limiter):
    limiter.acquire_otp_cooldown("a@b.com")
    limiter.release_otp_cooldown("a@b.com")
    limiter.acquire_otp_cooldown("a@b.com")


def test_fixed_window_enforce(limiter, clock):
    for _ in range(3):
        limiter.enforce("otp_request:10.0.0.1", 3, 60)

    clock.advance(seconds=15)
    with pytest.raises(RateLimitError) as exc:
        limiter.enforce("otp_request:10.0.0.1", 3, 60)
    assert exc.value.code == ErrorCode.RATE_LIMIT_EXCEEDED
    assert exc.value.retry_after == 45

    # other keys have their own window
    limiter.enforce("otp_request:10.0.0.2", 3, 60)

    clock.advance(seconds=45)
    limiter.enforce("otp_request:10.0.0.1", 3, 60)


def test_check_and_increment_reports_retry_after(limiter):
    assert limiter.check_and_increment("k", 1, 30) == (True, 0)
    assert limiter.check_and_increment("k", 1, 30) == (False, 30)


def test_cleanup_expired(limiter, clock):
    limiter.acquire_otp_cooldown("a@b.com")
    limiter.enforce("otp_verify:1.1.1.1", 5, 600)
    clock.advance(seconds=61)

    assert limiter.cleanup_expired() == 1
    assert limiter.repository.find("otp_verify:1.1.1.1") is not None


def test_sliding_window_limits_and_rolls():
    ticker = Ticker()
    window = SlidingWindowLimiter(max_requests=3, window_seconds=10, clock=ticker)

    for t in (0, 1, 2):
        ticker.t = t
        assert window.hit() == (True, 0)

    ticker.t = 3
    assert window.hit() == (False, 7)

    # first hit leaves the window at t=10
    ticker.t = 10
    assert window.hit() == (True, 0)
    assert window.hit() == (False, 1)

    ticker.t = 12
    assert window.hit() == (True, 0)
