"""
In-process stores. Used by the test-suite and by single-process deployments
that set ``STORAGE_BACKEND=memory``. Records handed out are copies, so a
caller never observes another thread's half-applied change.
"""
import threading
import uuid
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime
from typing import Dict, List, Optional

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
from utils.clock import utcnow
from utils.locks import KeyedLock


def _copy(record):
    return replace(record) if record is not None else None


class MemoryOtpRepository(OtpRepository):
    def __init__(self):
        self._mutex = threading.Lock()
        self._keyed = KeyedLock()
        self._by_id: Dict[str, OtpRecord] = {}

    @contextmanager
    def locked(self, email: str):
        with self._keyed.hold(email):
            yield

    def replace(self, email: str, code_hash: str, expires_at: datetime) -> OtpRecord:
        record = OtpRecord(
            id=str(uuid.uuid4()),
            email=email,
            code_hash=code_hash,
            expires_at=expires_at,
            created_at=utcnow(),
        )
        with self._mutex:
            self._delete_email(email)
            self._by_id[record.id] = record
        return _copy(record)

    def find_by_email(self, email: str) -> Optional[OtpRecord]:
        with self._mutex:
            for record in self._by_id.values():
                if record.email == email:
                    return _copy(record)
        return None

    def increment_attempts(self, record_id: str) -> int:
        with self._mutex:
            record = self._by_id.get(record_id)
            if record is None:
                return 0
            record.attempts += 1
            return record.attempts

    def mark_used(self, record_id: str) -> None:
        with self._mutex:
            record = self._by_id.get(record_id)
            if record is not None:
                record.is_used = True

    def delete_expired(self, now: datetime) -> int:
        with self._mutex:
            expired = [rid for rid, r in self._by_id.items() if r.expires_at < now]
            for rid in expired:
                del self._by_id[rid]
        return len(expired)

    def _delete_email(self, email: str) -> None:
        for rid in [rid for rid, r in self._by_id.items() if r.email == email]:
            del self._by_id[rid]

    # test helpers
    def all(self) -> List[OtpRecord]:
        with self._mutex:
            return [_copy(r) for r in self._by_id.values()]

    def clear(self) -> None:
        with self._mutex:
            self._by_id.clear()


class MemoryUserRepository(UserRepository):
    def __init__(self):
        self._mutex = threading.Lock()
        self._by_id: Dict[str, UserRecord] = {}

    def find_by_email(self, email: str) -> Optional[UserRecord]:
        with self._mutex:
            return _copy(self._find_email(email))

    def find_by_id(self, user_id: str) -> Optional[UserRecord]:
        with self._mutex:
            return _copy(self._by_id.get(user_id))

    def get_or_create(self, email: str) -> UserRecord:
        with self._mutex:
            user = self._find_email(email)
            if user is None:
                user = UserRecord(id=str(uuid.uuid4()), email=email, created_at=utcnow())
                self._by_id[user.id] = user
            return _copy(user)

    def update_last_login(self, user_id: str, when: datetime) -> UserRecord:
        with self._mutex:
            user = self._by_id[user_id]
            user.last_login_at = when
            return _copy(user)

    def _find_email(self, email: str) -> Optional[UserRecord]:
        for user in self._by_id.values():
            if user.email == email:
                return user
        return None

    def delete(self, user_id: str) -> None:
        with self._mutex:
            self._by_id.pop(user_id, None)

    def clear(self) -> None:
        with self._mutex:
            self._by_id.clear()


class MemoryRefreshTokenRepository(RefreshTokenRepository):
    def __init__(self):
        self._mutex = threading.Lock()
        self._by_hash: Dict[str, RefreshTokenRecord] = {}

    def create(self, user_id: str, token_hash: str, expires_at: datetime) -> RefreshTokenRecord:
        record = RefreshTokenRecord(
            id=str(uuid.uuid4()),
            user_id=user_id,
            token_hash=token_hash,
            expires_at=expires_at,
            created_at=utcnow(),
        )
        with self._mutex:
            self._by_hash[token_hash] = record
        return _copy(record)

    def find_by_hash(self, token_hash: str) -> Optional[RefreshTokenRecord]:
        with self._mutex:
            return _copy(self._by_hash.get(token_hash))

    def revoke_if_active(self, token_hash: str, when: datetime) -> bool:
        with self._mutex:
            record = self._by_hash.get(token_hash)
            if record is None or record.revoked:
                return False
            record.revoked = True
            record.revoked_at = when
            return True

    def revoke_all_for_user(self, user_id: str, when: datetime) -> int:
        count = 0
        with self._mutex:
            for record in self._by_hash.values():
                if record.user_id == user_id and not record.revoked:
                    record.revoked = True
                    record.revoked_at = when
                    count += 1
        return count

    def delete_expired(self, now: datetime) -> int:
        with self._mutex:
            expired = [h for h, r in self._by_hash.items() if r.expires_at < now]
            for h in expired:
                del self._by_hash[h]
        return len(expired)

    def all(self) -> List[RefreshTokenRecord]:
        with self._mutex:
            return [_copy(r) for r in self._by_hash.values()]

    def clear(self) -> None:
        with self._mutex:
            self._by_hash.clear()


class MemoryRateLimitRepository(RateLimitRepository):
    def __init__(self):
        self._mutex = threading.Lock()
        self._by_key: Dict[str, RateLimitRecord] = {}

    def find(self, key: str) -> Optional[RateLimitRecord]:
        with self._mutex:
            return _copy(self._by_key.get(key))

    def acquire_window(self, key: str, now: datetime, reset_at: datetime) -> Optional[RateLimitRecord]:
        with self._mutex:
            record = self._by_key.get(key)
            if record is not None and record.reset_at > now:
                return _copy(record)
            self._by_key[key] = RateLimitRecord(key=key, count=1, reset_at=reset_at)
            return None

    def hit(self, key: str, now: datetime, reset_at: datetime) -> RateLimitRecord:
        with self._mutex:
            record = self._by_key.get(key)
            if record is None or record.reset_at <= now:
                record = RateLimitRecord(key=key, count=0, reset_at=reset_at)
                self._by_key[key] = record
            record.count += 1
            return _copy(record)

    def delete(self, key: str) -> None:
        with self._mutex:
            self._by_key.pop(key, None)

    def delete_expired(self, now: datetime) -> int:
        with self._mutex:
            expired = [k for k, r in self._by_key.items() if r.reset_at <= now]
            for k in expired:
                del self._by_key[k]
        return len(expired)

    def clear(self) -> None:
        with self._mutex:
            self._by_key.clear()
