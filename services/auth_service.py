import logging
from dataclasses import dataclass

from repositories.base import UserRecord, UserRepository
from security.rate_limit import RateLimiter
from security.tokens import TokenPair, TokenService
from services.otp_service import OtpService
from utils.audit import log_event, mask_email, mask_ip
from utils.clock import utcnow
from utils.emailer import EmailDispatcher, otp_email
from utils.errors import AppError, ErrorCode, InfrastructureError, NotFoundError, TokenError

logger = logging.getLogger(__name__)


@dataclass
class LoginResult:
    user: UserRecord
    tokens: TokenPair


class AuthService:
    def __init__(
        self,
        users: UserRepository,
        otp_service: OtpService,
        token_service: TokenService,
        rate_limiter: RateLimiter,
        mailer: EmailDispatcher,
        request_rate=(10, 15 * 60),
        verify_rate=(20, 15 * 60),
        app_url: str = None,
        clock=utcnow,
    ):
        self.users = users
        self.otp_service = otp_service
        self.token_service = token_service
        self.rate_limiter = rate_limiter
        self.mailer = mailer
        self.request_rate = request_rate
        self.verify_rate = verify_rate
        self.app_url = app_url
        self.clock = clock

    def request_otp(self, email: str, client_ip: str = "unknown") -> None:
        self.rate_limiter.enforce(f"otp_request:{client_ip}", *self.request_rate)
        self.rate_limiter.acquire_otp_cooldown(email)

        try:
            code = self.otp_service.generate(email)
            self._send_code(email, code)
        except Exception:
            # nothing reached the user, let them ask again straight away
            self.rate_limiter.release_otp_cooldown(email)
            raise

        log_event("OTP_REQUESTED", metadata={"email": mask_email(email)})

    def verify_otp_and_login(self, email: str, code: str, client_ip: str = "unknown") -> LoginResult:
        self.rate_limiter.enforce(f"otp_verify:{client_ip}", *self.verify_rate)

        try:
            self.otp_service.verify(email, code)
        except AppError as exc:
            log_event("LOGIN_FAIL", metadata={"email": mask_email(email), "reason": exc.code.value})
            raise

        user = self.users.get_or_create(email)
        user = self.users.update_last_login(user.id, self.clock())
        tokens = self.token_service.issue(user.id)

        log_event("LOGIN_SUCCESS", user_id=user.id, metadata={"ip": mask_ip(client_ip)})
        return LoginResult(user=user, tokens=tokens)

    def refresh_tokens(self, refresh_token: str) -> TokenPair:
        result = self.token_service.refresh(refresh_token)
        if self.users.find_by_id(result.user_id) is None:
            self.token_service.revoke(result.tokens.refresh_token)
            raise TokenError(ErrorCode.TOKEN_INVALID, "Invalid refresh token")

        log_event("TOKEN_REFRESHED", user_id=result.user_id)
        return result.tokens

    def logout(self, refresh_token: str = None) -> bool:
        if not refresh_token:
            return False
        revoked = self.token_service.revoke(refresh_token)
        log_event("LOGOUT", metadata={"revoked": revoked})
        return revoked

    def logout_all(self, user_id: str) -> int:
        count = self.token_service.revoke_all(user_id)
        log_event("LOGOUT_ALL", user_id=user_id, metadata={"revoked_sessions": count})
        return count

    def get_profile(self, user_id: str) -> UserRecord:
        user = self.users.find_by_id(user_id)
        if user is None:
            raise NotFoundError(ErrorCode.USER_NOT_FOUND, "User not found")
        return user

    def _send_code(self, email: str, code: str) -> None:
        message = otp_email(email, code, max(self.otp_service.ttl_seconds // 60, 1), self.app_url)
        try:
            self.mailer.send(message)
        except AppError:
            raise
        except Exception as exc:
            logger.exception("Failed to send OTP email to %s", mask_email(email))
            raise InfrastructureError(ErrorCode.EMAIL_SEND_FAILED, "Failed to send verification code") from exc
