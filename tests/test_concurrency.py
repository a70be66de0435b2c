import threading

import pytest

from app import get_container_for
from repositories import MemoryOtpRepository, MemoryRateLimitRepository, MemoryRefreshTokenRepository
from security.rate_limit import RateLimiter
from security.tokens import TokenService
from services.otp_service import OtpService
from utils.errors import AppError, ErrorCode
from utils.locks import KeyedLock

WORKERS = 8


def _race(fn, workers=WORKERS):
    """Runs fn in `workers` threads released together; returns (results, errors)."""
    barrier = threading.Barrier(workers)
    results, errors = [], []
    mutex = threading.Lock()

    def run():
        barrier.wait()
        try:
            value = fn()
        except AppError as exc:
            with mutex:
                errors.append(exc)
        else:
            with mutex:
                results.append(value)

    threads = [threading.Thread(target=run) for _ in range(workers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)
    return results, errors


def test_same_code_verifies_once_under_contention():
    service = OtpService(MemoryOtpRepository(), hash_rounds=4)
    code = service.generate("a@b.com")

    results, errors = _race(lambda: service.verify("a@b.com", code))

    assert len(results) == 1
    assert len(errors) == WORKERS - 1
    assert {e.code for e in errors} == {ErrorCode.OTP_INVALID}


def test_concurrent_wrong_guesses_never_exceed_budget():
    repo = MemoryOtpRepository()
    service = OtpService(repo, max_attempts=3, hash_rounds=4)
    service.generate("a@b.com")

    _, errors = _race(lambda: service.verify("a@b.com", "not-it"))

    assert repo.find_by_email("a@b.com").attempts == 3
    codes = [e.code for e in errors]
    assert codes.count(ErrorCode.OTP_INVALID) == 3
    assert codes.count(ErrorCode.OTP_MAX_ATTEMPTS_EXCEEDED) == WORKERS - 3


def test_refresh_token_rotates_once_under_contention():
    service = TokenService(MemoryRefreshTokenRepository(), secret="race-secret-that-is-long-enough-1234")
    pair = service.issue("user-1")

    results, errors = _race(lambda: service.refresh(pair.refresh_token))

    assert len(results) == 1
    assert {e.code for e in errors} == {ErrorCode.TOKEN_INVALID}
    # the winner's pair is usable
    assert service.refresh(results[0].tokens.refresh_token).user_id == "user-1"


def test_cooldown_admits_one_request_under_contention():
    limiter = RateLimiter(MemoryRateLimitRepository(), otp_cooldown_seconds=60)

    results, errors = _race(lambda: limiter.acquire_otp_cooldown("a@b.com"))

    assert len(results) == 1
    assert {e.code for e in errors} == {ErrorCode.OTP_COOLDOWN_ACTIVE}


def test_fixed_window_counts_every_hit():
    limiter = RateLimiter(MemoryRateLimitRepository())

    _race(lambda: limiter.check_and_increment("ip:1", 100, 60))

    assert limiter.repository.find("ip:1").count == WORKERS


def test_keyed_lock_releases_unused_keys():
    locks = KeyedLock()
    with locks.hold("a"):
        with locks.hold("b"):
            assert len(locks) == 2
    assert len(locks) == 0


def test_keyed_lock_serialises_same_key():
    locks = KeyedLock()
    inside = []
    overlaps = []

    def work():
        with locks.hold("k"):
            inside.append(1)
            if len(inside) > 1:
                overlaps.append(True)
            inside.pop()

    _race(work)
    assert overlaps == []


def test_sql_revoke_if_active_first_wins(sql_app):
    from repositories import SqlRefreshTokenRepository, SqlUserRepository

    user = SqlUserRepository().get_or_create("a@b.com")
    service = TokenService(SqlRefreshTokenRepository(), secret=sql_app.config["JWT_SECRET"])
    pair = service.issue(user.id)

    service.refresh(pair.refresh_token)
    with pytest.raises(AppError) as exc:
        service.refresh(pair.refresh_token)
    assert exc.value.code == ErrorCode.TOKEN_INVALID


@pytest.fixture
def file_sql_app(make_app, tmp_path):
    # threads need a real file so each one gets its own connection
    return make_app(STORAGE_BACKEND="sql", SQLALCHEMY_DATABASE_URI=f"sqlite:///{tmp_path / 'race.db'}")


def _in_app(app, fn):
    def run():
        with app.app_context():
            return fn()
    return run


def test_sql_same_code_verifies_once_under_contention(file_sql_app):
    otp_service = get_container_for(file_sql_app).otp_service
    code = otp_service.generate("a@b.com")

    results, errors = _race(_in_app(file_sql_app, lambda: otp_service.verify("a@b.com", code)))

    assert len(results) == 1
    assert len(errors) == WORKERS - 1
    assert {e.code for e in errors} == {ErrorCode.OTP_INVALID}
    assert otp_service.repository.find_by_email("a@b.com").is_used is True


def test_sql_refresh_token_rotates_once_under_contention(file_sql_app):
    container = get_container_for(file_sql_app)
    user = container.users.get_or_create("a@b.com")
    pair = container.token_service.issue(user.id)

    results, errors = _race(_in_app(file_sql_app, lambda: container.token_service.refresh(pair.refresh_token)))

    assert len(results) == 1
    assert {e.code for e in errors} == {ErrorCode.TOKEN_INVALID}
    assert container.token_service.refresh(results[0].tokens.refresh_token).user_id == user.id


def test_sql_cooldown_admits_one_request_under_contention(file_sql_app):
    limiter = get_container_for(file_sql_app).rate_limiter

    results, errors = _race(_in_app(file_sql_app, lambda: limiter.acquire_otp_cooldown("a@b.com")))

    assert len(results) == 1
    assert {e.code for e in errors} == {ErrorCode.OTP_COOLDOWN_ACTIVE}
