import hashlib
import logging
import secrets
import uuid
from dataclasses import dataclass
from datetime import timedelta
from typing import Callable

import jwt

from repositories.base import RefreshTokenRepository
from utils.audit import mask_token
from utils.clock import utcnow
from utils.errors import ErrorCode, TokenError

logger = logging.getLogger(__name__)

ACCESS_TOKEN_TYPE = "access"


def hash_token(token: str) -> str:
    # SHA-256 is fine for hashing random refresh tokens
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str

    def to_dict(self) -> dict:
        return {"accessToken": self.access_token, "refreshToken": self.refresh_token}


@dataclass(frozen=True)
class RefreshResult:
    user_id: str
    tokens: TokenPair


class TokenService:
    """
    Access tokens are stateless HS256 JWTs carrying the user id in ``sub``.
    Refresh tokens are opaque random strings; only their SHA-256 is stored,
    and each one can be exchanged exactly once.
    """

    def __init__(
        self,
        repository: RefreshTokenRepository,
        secret: str,
        algorithm: str = "HS256",
        access_ttl_seconds: int = 15 * 60,
        refresh_ttl_seconds: int = 7 * 24 * 60 * 60,
        clock: Callable = utcnow,
    ):
        if not secret:
            raise ValueError("A signing secret is required")
        self.repository = repository
        self.secret = secret
        self.algorithm = algorithm
        self.access_ttl_seconds = access_ttl_seconds
        self.refresh_ttl_seconds = refresh_ttl_seconds
        self.clock = clock

    def issue(self, user_id: str) -> TokenPair:
        now = self.clock()
        access_token = jwt.encode(
            {
                "sub": str(user_id),
                "type": ACCESS_TOKEN_TYPE,
                "jti": str(uuid.uuid4()),
                "iat": now,
                "exp": now + timedelta(seconds=self.access_ttl_seconds),
            },
            self.secret,
            algorithm=self.algorithm,
        )

        raw_refresh = secrets.token_urlsafe(32)
        self.repository.create(
            user_id=str(user_id),
            token_hash=hash_token(raw_refresh),
            expires_at=now + timedelta(seconds=self.refresh_ttl_seconds),
        )
        return TokenPair(access_token=access_token, refresh_token=raw_refresh)

    def verify_access(self, token: str) -> dict:
        if not token or not isinstance(token, str):
            raise TokenError(ErrorCode.TOKEN_INVALID, "Invalid token")
        try:
            claims = jwt.decode(
                token,
                self.secret,
                algorithms=[self.algorithm],
                options={"require": ["sub", "exp"]},
            )
        except jwt.ExpiredSignatureError:
            raise TokenError(ErrorCode.TOKEN_EXPIRED, "Token has expired")
        except jwt.InvalidTokenError:
            raise TokenError(ErrorCode.TOKEN_INVALID, "Invalid token")

        if claims.get("type") != ACCESS_TOKEN_TYPE:
            raise TokenError(ErrorCode.TOKEN_INVALID, "Invalid token type")
        return claims

    def refresh(self, raw_token: str) -> RefreshResult:
        if not raw_token or not isinstance(raw_token, str) or len(raw_token) > 512:
            raise TokenError(ErrorCode.TOKEN_INVALID, "Invalid refresh token")

        token_hash = hash_token(raw_token)
        record = self.repository.find_by_hash(token_hash)
        if record is None or record.revoked:
            logger.warning("Refresh rejected for %s: unknown or revoked", mask_token(raw_token))
            raise TokenError(ErrorCode.TOKEN_INVALID, "Invalid refresh token")

        now = self.clock()
        if record.expires_at <= now:
            logger.warning("Refresh rejected for %s: expired", mask_token(raw_token))
            raise TokenError(ErrorCode.TOKEN_EXPIRED, "Refresh token has expired")

        # First revocation wins; a concurrent caller holding the same token lands here.
        if not self.repository.revoke_if_active(token_hash, now):
            logger.warning("Refresh rejected for %s: lost rotation race", mask_token(raw_token))
            raise TokenError(ErrorCode.TOKEN_INVALID, "Invalid refresh token")

        return RefreshResult(user_id=record.user_id, tokens=self.issue(record.user_id))

    def revoke(self, raw_token: str) -> bool:
        if not raw_token or not isinstance(raw_token, str):
            return False
        return self.repository.revoke_if_active(hash_token(raw_token), self.clock())

    def revoke_all(self, user_id: str) -> int:
        return self.repository.revoke_all_for_user(str(user_id), self.clock())

    def cleanup_expired_tokens(self) -> int:
        try:
            count = self.repository.delete_expired(self.clock())
        except Exception:
            logger.exception("Failed to clean up expired refresh tokens")
            return 0
        if count:
            logger.info("Removed %d expired refresh tokens", count)
        return count
