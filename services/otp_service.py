import logging
from datetime import timedelta
from typing import Callable

from repositories.base import OtpRepository
from security.otp import generate_otp_code, hash_otp_code, verify_otp_code
from utils.audit import mask_email
from utils.clock import utcnow
from utils.errors import ErrorCode, OtpError

logger = logging.getLogger(__name__)


class OtpService:
    """
    Issues and checks email one-time codes.

    A verification walks the checks in a fixed order (missing, used, attempt
    budget, expiry, comparison) inside the store's per-email lock, so two
    racing verifies for one address can never both succeed and the attempt
    counter only moves on a real comparison.
    """

    def __init__(
        self,
        repository: OtpRepository,
        length: int = 6,
        ttl_seconds: int = 600,
        max_attempts: int = 5,
        hash_rounds: int = 10,
        clock: Callable = utcnow,
    ):
        self.repository = repository
        self.length = length
        self.ttl_seconds = ttl_seconds
        self.max_attempts = max_attempts
        self.hash_rounds = hash_rounds
        self.clock = clock

    def generate(self, email: str) -> str:
        code = generate_otp_code(self.length)
        code_hash = hash_otp_code(code, rounds=self.hash_rounds)
        expires_at = self.clock() + timedelta(seconds=self.ttl_seconds)

        with self.repository.locked(email):
            self.repository.replace(email, code_hash, expires_at)

        logger.info("OTP generated for %s, expires at %s", mask_email(email), expires_at.isoformat())
        return code

    def verify(self, email: str, code: str) -> None:
        with self.repository.locked(email):
            record = self.repository.find_by_email(email)

            if record is None:
                logger.warning("OTP verification failed for %s: not found", mask_email(email))
                raise OtpError(ErrorCode.OTP_NOT_FOUND, "No verification code found for this email")

            if record.is_used:
                logger.warning("OTP verification failed for %s: already used", mask_email(email))
                raise OtpError(ErrorCode.OTP_INVALID, "Verification code has already been used")

            if record.attempts >= self.max_attempts:
                logger.warning(
                    "OTP verification failed for %s: %d attempts used", mask_email(email), record.attempts
                )
                raise OtpError(ErrorCode.OTP_MAX_ATTEMPTS_EXCEEDED, "Too many verification attempts")

            if self.clock() > record.expires_at:
                logger.warning("OTP verification failed for %s: expired", mask_email(email))
                raise OtpError(ErrorCode.OTP_EXPIRED, "Verification code has expired")

            if not verify_otp_code(code, record.code_hash):
                attempts = self.repository.increment_attempts(record.id)
                logger.warning("OTP verification failed for %s: wrong code (attempt %d)", mask_email(email), attempts)
                raise OtpError(
                    ErrorCode.OTP_INVALID,
                    "Invalid verification code",
                    details={"attemptsRemaining": max(self.max_attempts - attempts, 0)},
                )

            self.repository.mark_used(record.id)

        logger.info("OTP verified for %s", mask_email(email))

    def cleanup_expired_otps(self) -> int:
        try:
            count = self.repository.delete_expired(self.clock())
        except Exception:
            logger.exception("Failed to clean up expired OTPs")
            return 0
        if count:
            logger.info("Removed %d expired OTPs", count)
        return count
