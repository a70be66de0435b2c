import logging

from repositories import (
    MemoryOtpRepository,
    MemoryRateLimitRepository,
    MemoryRefreshTokenRepository,
    MemoryUserRepository,
    SqlOtpRepository,
    SqlRateLimitRepository,
    SqlRefreshTokenRepository,
    SqlUserRepository,
)
from security.rate_limit import RateLimiter, SlidingWindowLimiter
from security.tokens import TokenService
from services.auth_service import AuthService
from services.otp_service import OtpService
from utils.clock import utcnow
from utils.emailer import create_dispatcher

logger = logging.getLogger(__name__)


class ServiceContainer:
    """Wires stores, services and the mailer together from one config mapping."""

    def __init__(self, config, mailer=None, clock=utcnow):
        backend = (config.get("STORAGE_BACKEND") or "sql").lower()
        if backend == "memory":
            self.users = MemoryUserRepository()
            self.otps = MemoryOtpRepository()
            self.refresh_tokens = MemoryRefreshTokenRepository()
            self.rate_limits = MemoryRateLimitRepository()
        elif backend == "sql":
            self.users = SqlUserRepository()
            self.otps = SqlOtpRepository()
            self.refresh_tokens = SqlRefreshTokenRepository()
            self.rate_limits = SqlRateLimitRepository()
        else:
            raise ValueError(f"Unknown STORAGE_BACKEND: {backend}")
        self.backend = backend

        self.mailer = mailer or create_dispatcher(config)

        self.otp_service = OtpService(
            self.otps,
            length=config.get("OTP_LENGTH", 6),
            ttl_seconds=config.get("OTP_TTL_SECONDS", 600),
            max_attempts=config.get("OTP_MAX_ATTEMPTS", 5),
            hash_rounds=config.get("OTP_HASH_ROUNDS", 10),
            clock=clock,
        )
        self.token_service = TokenService(
            self.refresh_tokens,
            secret=config.get("JWT_SECRET") or config.get("SECRET_KEY"),
            algorithm=config.get("JWT_ALGORITHM", "HS256"),
            access_ttl_seconds=config.get("JWT_ACCESS_TTL_SECONDS", 15 * 60),
            refresh_ttl_seconds=config.get("JWT_REFRESH_TTL_SECONDS", 7 * 24 * 60 * 60),
            clock=clock,
        )
        self.rate_limiter = RateLimiter(
            self.rate_limits,
            otp_cooldown_seconds=config.get("OTP_COOLDOWN_SECONDS", 60),
            clock=clock,
        )
        self.global_limiter = SlidingWindowLimiter(
            max_requests=config.get("RATE_LIMIT_MAX_REQUESTS", 100),
            window_seconds=config.get("RATE_LIMIT_WINDOW_SECONDS", 900),
        )

        window = config.get("OTP_RATE_WINDOW_SECONDS", 15 * 60)
        self.auth_service = AuthService(
            self.users,
            self.otp_service,
            self.token_service,
            self.rate_limiter,
            self.mailer,
            request_rate=(config.get("OTP_REQUEST_RATE_MAX", 10), window),
            verify_rate=(config.get("OTP_VERIFY_RATE_MAX", 20), window),
            app_url=config.get("APP_BASE_URL"),
            clock=clock,
        )

    def run_cleanup_tasks(self) -> dict:
        result = {
            "otps": self.otp_service.cleanup_expired_otps(),
            "refresh_tokens": self.token_service.cleanup_expired_tokens(),
            "rate_limits": self.rate_limiter.cleanup_expired(),
        }
        logger.info("Cleanup finished: %s", result)
        return result
