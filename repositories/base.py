"""
Storage contracts for the auth engine.

Services receive concrete stores through their constructors; nothing here is
a module-level singleton. Every store returns the plain records defined below
so callers never depend on the backend's row types.
"""
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Iterator, Optional


@dataclass
class UserRecord:
    id: str
    email: str
    created_at: datetime
    last_login_at: Optional[datetime] = None

    def to_public(self) -> dict:
        return {
            "id": self.id,
            "email": self.email,
            "lastLoginAt": self.last_login_at.isoformat() + "Z" if self.last_login_at else None,
        }


@dataclass
class OtpRecord:
    id: str
    email: str
    code_hash: str
    expires_at: datetime
    created_at: datetime
    attempts: int = 0
    is_used: bool = False


@dataclass
class RefreshTokenRecord:
    id: str
    user_id: str
    token_hash: str
    expires_at: datetime
    created_at: datetime
    revoked: bool = False
    revoked_at: Optional[datetime] = None


@dataclass
class RateLimitRecord:
    key: str
    count: int
    reset_at: datetime


class OtpRepository(ABC):
    @abstractmethod
    def replace(self, email: str, code_hash: str, expires_at: datetime) -> OtpRecord:
        """Delete any record for ``email`` and store a fresh unused one."""

    @abstractmethod
    def find_by_email(self, email: str) -> Optional[OtpRecord]:
        ...

    @abstractmethod
    def increment_attempts(self, record_id: str) -> int:
        """Returns the new attempt count."""

    @abstractmethod
    def mark_used(self, record_id: str) -> None:
        ...

    @abstractmethod
    def delete_expired(self, now: datetime) -> int:
        ...

    @contextmanager
    def locked(self, email: str) -> Iterator[None]:
        """
        Serialises read-check-mutate sequences for one address. Backends
        override this; the default only suits single-threaded use.
        """
        yield


class UserRepository(ABC):
    @abstractmethod
    def find_by_email(self, email: str) -> Optional[UserRecord]:
        ...

    @abstractmethod
    def find_by_id(self, user_id: str) -> Optional[UserRecord]:
        ...

    @abstractmethod
    def get_or_create(self, email: str) -> UserRecord:
        ...

    @abstractmethod
    def update_last_login(self, user_id: str, when: datetime) -> UserRecord:
        ...


class RefreshTokenRepository(ABC):
    @abstractmethod
    def create(self, user_id: str, token_hash: str, expires_at: datetime) -> RefreshTokenRecord:
        ...

    @abstractmethod
    def find_by_hash(self, token_hash: str) -> Optional[RefreshTokenRecord]:
        ...

    @abstractmethod
    def revoke_if_active(self, token_hash: str, when: datetime) -> bool:
        """
        Compare-and-set revocation. Returns True only for the single caller
        that flipped the token from live to revoked.
        """

    @abstractmethod
    def revoke_all_for_user(self, user_id: str, when: datetime) -> int:
        ...

    @abstractmethod
    def delete_expired(self, now: datetime) -> int:
        ...


class RateLimitRepository(ABC):
    @abstractmethod
    def find(self, key: str) -> Optional[RateLimitRecord]:
        ...

    @abstractmethod
    def acquire_window(self, key: str, now: datetime, reset_at: datetime) -> Optional[RateLimitRecord]:
        """
        Atomically start a window for ``key`` unless one is still running.
        Returns None when the window was started, otherwise the live record.
        """

    @abstractmethod
    def hit(self, key: str, now: datetime, reset_at: datetime) -> RateLimitRecord:
        """
        Atomically count one request against ``key``; an elapsed window is
        restarted with ``reset_at`` first.
        """

    @abstractmethod
    def delete(self, key: str) -> None:
        ...

    @abstractmethod
    def delete_expired(self, now: datetime) -> int:
        ...
