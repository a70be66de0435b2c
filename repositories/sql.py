"""
SQLAlchemy-backed stores built on the Flask-SQLAlchemy models. They must be
used inside an application context.
"""
from contextlib import contextmanager
from datetime import datetime
from typing import Optional

from sqlalchemy.exc import IntegrityError

from models import db
from models.email_otp import EmailOTP
from models.rate_limit import RateLimit
from models.refresh_token import RefreshToken
from models.user import User
from repositories.base import (
    OtpRecord,
    OtpRepository,
    RateLimitRecord,
    RateLimitRepository,
    RefreshTokenRecord,
    RefreshTokenRepository,
    UserRecord,
    UserRepository,
)
from utils.locks import KeyedLock


def _otp(row: EmailOTP) -> Optional[OtpRecord]:
    if row is None:
        return None
    return OtpRecord(
        id=row.id,
        email=row.email,
        code_hash=row.code_hash,
        expires_at=row.expires_at,
        created_at=row.created_at,
        attempts=row.attempts,
        is_used=row.is_used,
    )


def _user(row: User) -> Optional[UserRecord]:
    if row is None:
        return None
    return UserRecord(id=row.id, email=row.email, created_at=row.created_at, last_login_at=row.last_login_at)


def _token(row: RefreshToken) -> Optional[RefreshTokenRecord]:
    if row is None:
        return None
    return RefreshTokenRecord(
        id=row.id,
        user_id=row.user_id,
        token_hash=row.token_hash,
        expires_at=row.expires_at,
        created_at=row.created_at,
        revoked=row.revoked,
        revoked_at=row.revoked_at,
    )


def _limit(row: RateLimit) -> Optional[RateLimitRecord]:
    if row is None:
        return None
    return RateLimitRecord(key=row.key, count=row.count, reset_at=row.reset_at)


class SqlOtpRepository(OtpRepository):
    def __init__(self):
        self._keyed = KeyedLock()

    @contextmanager
    def locked(self, email: str):
        with self._keyed.hold(email):
            # Row lock for multi-process deployments; SQLite ignores it.
            EmailOTP.query.filter_by(email=email).with_for_update().first()
            try:
                yield
            finally:
                # every mutation inside the section has already committed
                db.session.rollback()

    def replace(self, email: str, code_hash: str, expires_at: datetime) -> OtpRecord:
        EmailOTP.query.filter_by(email=email).delete(synchronize_session=False)
        row = EmailOTP(email=email, code_hash=code_hash, expires_at=expires_at, attempts=0, is_used=False)
        db.session.add(row)
        db.session.commit()
        return _otp(row)

    def find_by_email(self, email: str) -> Optional[OtpRecord]:
        return _otp(EmailOTP.query.filter_by(email=email).first())

    def increment_attempts(self, record_id: str) -> int:
        EmailOTP.query.filter_by(id=record_id).update(
            {EmailOTP.attempts: EmailOTP.attempts + 1}, synchronize_session=False
        )
        db.session.commit()
        row = db.session.get(EmailOTP, record_id)
        return row.attempts if row else 0

    def mark_used(self, record_id: str) -> None:
        EmailOTP.query.filter_by(id=record_id).update({EmailOTP.is_used: True}, synchronize_session=False)
        db.session.commit()

    def delete_expired(self, now: datetime) -> int:
        count = EmailOTP.query.filter(EmailOTP.expires_at < now).delete(synchronize_session=False)
        db.session.commit()
        return count


class SqlUserRepository(UserRepository):
    def find_by_email(self, email: str) -> Optional[UserRecord]:
        return _user(User.query.filter_by(email=email).first())

    def find_by_id(self, user_id: str) -> Optional[UserRecord]:
        return _user(db.session.get(User, user_id))

    def get_or_create(self, email: str) -> UserRecord:
        row = User.query.filter_by(email=email).first()
        if row:
            return _user(row)

        row = User(email=email)
        db.session.add(row)
        try:
            db.session.commit()
        except IntegrityError:
            # another request created the same user first
            db.session.rollback()
            row = User.query.filter_by(email=email).first()
        return _user(row)

    def update_last_login(self, user_id: str, when: datetime) -> UserRecord:
        row = db.session.get(User, user_id)
        row.last_login_at = when
        db.session.commit()
        return _user(row)


class SqlRefreshTokenRepository(RefreshTokenRepository):
    def create(self, user_id: str, token_hash: str, expires_at: datetime) -> RefreshTokenRecord:
        row = RefreshToken(user_id=user_id, token_hash=token_hash, expires_at=expires_at)
        db.session.add(row)
        db.session.commit()
        return _token(row)

    def find_by_hash(self, token_hash: str) -> Optional[RefreshTokenRecord]:
        return _token(RefreshToken.query.filter_by(token_hash=token_hash).first())

    def revoke_if_active(self, token_hash: str, when: datetime) -> bool:
        # single conditional UPDATE: only one caller can see rowcount == 1
        changed = RefreshToken.query.filter_by(token_hash=token_hash, revoked=False).update(
            {RefreshToken.revoked: True, RefreshToken.revoked_at: when}, synchronize_session=False
        )
        db.session.commit()
        return changed == 1

    def revoke_all_for_user(self, user_id: str, when: datetime) -> int:
        changed = RefreshToken.query.filter_by(user_id=user_id, revoked=False).update(
            {RefreshToken.revoked: True, RefreshToken.revoked_at: when}, synchronize_session=False
        )
        db.session.commit()
        return changed

    def delete_expired(self, now: datetime) -> int:
        count = RefreshToken.query.filter(RefreshToken.expires_at < now).delete(synchronize_session=False)
        db.session.commit()
        return count


class SqlRateLimitRepository(RateLimitRepository):
    def __init__(self):
        self._keyed = KeyedLock()

    def find(self, key: str) -> Optional[RateLimitRecord]:
        return _limit(RateLimit.query.filter_by(key=key).first())

    def acquire_window(self, key: str, now: datetime, reset_at: datetime) -> Optional[RateLimitRecord]:
        with self._keyed.hold(key):
            row = self._locked_row(key)
            if row and row.reset_at > now:
                record = _limit(row)
                db.session.rollback()
                return record

            if row:
                row.count = 1
                row.reset_at = reset_at
            else:
                db.session.add(RateLimit(key=key, count=1, reset_at=reset_at))
            try:
                db.session.commit()
            except IntegrityError:
                db.session.rollback()
                return self.find(key)
            return None

    def _locked_row(self, key: str) -> Optional[RateLimit]:
        return RateLimit.query.filter_by(key=key).with_for_update().first()

    def hit(self, key: str, now: datetime, reset_at: datetime) -> RateLimitRecord:
        with self._keyed.hold(key):
            try:
                return self._hit(key, now, reset_at)
            except IntegrityError:
                # another worker inserted the key first; count against its row
                db.session.rollback()
                return self._hit(key, now, reset_at)

    def _hit(self, key: str, now: datetime, reset_at: datetime) -> RateLimitRecord:
        row = self._locked_row(key)
        if not row:
            row = RateLimit(key=key, reset_at=reset_at, count=0)
            db.session.add(row)

        # Reset window if expired
        if row.reset_at <= now:
            row.reset_at = reset_at
            row.count = 0

        row.count += 1
        db.session.commit()
        return _limit(row)

    def delete(self, key: str) -> None:
        RateLimit.query.filter_by(key=key).delete(synchronize_session=False)
        db.session.commit()

    def delete_expired(self, now: datetime) -> int:
        count = RateLimit.query.filter(RateLimit.reset_at <= now).delete(synchronize_session=False)
        db.session.commit()
        return count
