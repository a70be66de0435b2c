from datetime import timedelta

import jwt
import pytest

from repositories import MemoryRefreshTokenRepository
from security.tokens import TokenService, hash_token
from utils.clock import utcnow
from utils.errors import ErrorCode, TokenError

SECRET = "unit-test-secret-that-is-long-enough"


@pytest.fixture
def repo():
    return MemoryRefreshTokenRepository()


@pytest.fixture
def service(repo):
    return TokenService(repo, secret=SECRET, access_ttl_seconds=900, refresh_ttl_seconds=3600)


def _fails_with(fn, *args, code):
    with pytest.raises(TokenError) as exc:
        fn(*args)
    assert exc.value.code == code
    assert exc.value.status_code == 401


def test_requires_secret(repo):
    with pytest.raises(ValueError):
        TokenService(repo, secret="")


def test_issue_and_verify_access(service):
    pair = service.issue("user-1")

    claims = service.verify_access(pair.access_token)
    assert claims["sub"] == "user-1"
    assert claims["type"] == "access"
    assert claims["exp"] - claims["iat"] == 900
    assert set(claims) == {"sub", "type", "jti", "iat", "exp"}
    assert pair.to_dict() == {"accessToken": pair.access_token, "refreshToken": pair.refresh_token}


def test_refresh_token_is_stored_hashed(service, repo):
    pair = service.issue("user-1")

    [record] = repo.all()
    assert record.token_hash == hash_token(pair.refresh_token)
    assert pair.refresh_token not in record.token_hash
    assert record.user_id == "user-1"
    assert record.revoked is False


def test_expired_access_token(repo):
    past = TokenService(repo, secret=SECRET, access_ttl_seconds=60, clock=lambda: utcnow() - timedelta(hours=1))
    token = past.issue("user-1").access_token

    current = TokenService(repo, secret=SECRET)
    _fails_with(current.verify_access, token, code=ErrorCode.TOKEN_EXPIRED)


@pytest.mark.parametrize("token", ["", "garbage", "a.b.c"])
def test_malformed_access_token(service, token):
    _fails_with(service.verify_access, token, code=ErrorCode.TOKEN_INVALID)


def test_access_token_signed_with_other_secret(service):
    now = utcnow()
    forged = jwt.encode(
        {"sub": "user-1", "type": "access", "iat": now, "exp": now + timedelta(minutes=5)},
        "some-other-secret-of-decent-length",
        algorithm="HS256",
    )
    _fails_with(service.verify_access, forged, code=ErrorCode.TOKEN_INVALID)


def test_access_token_of_wrong_type(service):
    now = utcnow()
    token = jwt.encode(
        {"sub": "user-1", "type": "refresh", "iat": now, "exp": now + timedelta(minutes=5)},
        SECRET,
        algorithm="HS256",
    )
    _fails_with(service.verify_access, token, code=ErrorCode.TOKEN_INVALID)


def test_refresh_token_is_not_an_access_token(service):
    pair = service.issue("user-1")
    _fails_with(service.verify_access, pair.refresh_token, code=ErrorCode.TOKEN_INVALID)


def test_refresh_rotates_pair(service, repo):
    old = service.issue("user-1")

    result = service.refresh(old.refresh_token)

    assert result.user_id == "user-1"
    assert result.tokens.access_token != old.access_token
    assert result.tokens.refresh_token != old.refresh_token
    assert repo.find_by_hash(hash_token(old.refresh_token)).revoked is True
    assert repo.find_by_hash(hash_token(result.tokens.refresh_token)).revoked is False


def test_old_refresh_token_cannot_be_reused(service):
    old = service.issue("user-1")
    service.refresh(old.refresh_token)

    _fails_with(service.refresh, old.refresh_token, code=ErrorCode.TOKEN_INVALID)


def test_new_refresh_token_keeps_rotating(service):
    pair = service.issue("user-1")
    for _ in range(3):
        pair = service.refresh(pair.refresh_token).tokens
    assert service.verify_access(pair.access_token)["sub"] == "user-1"


@pytest.mark.parametrize("token", [None, "", "unknown-token", "x" * 600])
def test_refresh_rejects_unknown_or_malformed(service, token):
    _fails_with(service.refresh, token, code=ErrorCode.TOKEN_INVALID)


def test_refresh_rejects_expired(repo, clock):
    service = TokenService(repo, secret=SECRET, refresh_ttl_seconds=3600, clock=clock)
    pair = service.issue("user-1")
    clock.advance(seconds=3600)

    _fails_with(service.refresh, pair.refresh_token, code=ErrorCode.TOKEN_EXPIRED)


def test_revoked_check_comes_before_expiry(repo, clock):
    service = TokenService(repo, secret=SECRET, refresh_ttl_seconds=3600, clock=clock)
    pair = service.issue("user-1")
    service.revoke(pair.refresh_token)
    clock.advance(days=1)

    _fails_with(service.refresh, pair.refresh_token, code=ErrorCode.TOKEN_INVALID)


def test_revoke_is_idempotent(service):
    pair = service.issue("user-1")

    assert service.revoke(pair.refresh_token) is True
    assert service.revoke(pair.refresh_token) is False
    assert service.revoke("never-issued") is False
    assert service.revoke(None) is False
    _fails_with(service.refresh, pair.refresh_token, code=ErrorCode.TOKEN_INVALID)


def test_revoke_all_only_touches_one_user(service):
    a1 = service.issue("user-a")
    a2 = service.issue("user-a")
    b = service.issue("user-b")

    assert service.revoke_all("user-a") == 2
    assert service.revoke_all("user-a") == 0

    _fails_with(service.refresh, a1.refresh_token, code=ErrorCode.TOKEN_INVALID)
    _fails_with(service.refresh, a2.refresh_token, code=ErrorCode.TOKEN_INVALID)
    assert service.refresh(b.refresh_token).user_id == "user-b"


def test_cleanup_expired_tokens(repo, clock):
    service = TokenService(repo, secret=SECRET, refresh_ttl_seconds=60, clock=clock)
    service.issue("user-1")
    clock.advance(seconds=30)
    keep = service.issue("user-2")
    clock.advance(seconds=31)

    assert service.cleanup_expired_tokens() == 1
    assert [r.token_hash for r in repo.all()] == [hash_token(keep.refresh_token)]
