from enum import Enum


class ErrorCode(str, Enum):
    # Token / session
    TOKEN_EXPIRED = "TOKEN_EXPIRED"
    TOKEN_INVALID = "TOKEN_INVALID"
    TOKEN_REQUIRED = "TOKEN_REQUIRED"
    UNAUTHORIZED = "UNAUTHORIZED"

    # OTP
    OTP_INVALID = "OTP_INVALID"
    OTP_EXPIRED = "OTP_EXPIRED"
    OTP_MAX_ATTEMPTS_EXCEEDED = "OTP_MAX_ATTEMPTS_EXCEEDED"
    OTP_COOLDOWN_ACTIVE = "OTP_COOLDOWN_ACTIVE"
    OTP_NOT_FOUND = "OTP_NOT_FOUND"

    VALIDATION_ERROR = "VALIDATION_ERROR"
    USER_NOT_FOUND = "USER_NOT_FOUND"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"

    ENDPOINT_NOT_FOUND = "ENDPOINT_NOT_FOUND"
    METHOD_NOT_ALLOWED = "METHOD_NOT_ALLOWED"

    # Infrastructure
    INTERNAL_SERVER_ERROR = "INTERNAL_SERVER_ERROR"
    EMAIL_SEND_FAILED = "EMAIL_SEND_FAILED"
    DATABASE_ERROR = "DATABASE_ERROR"


class AppError(Exception):
    """
    Base for every error that is allowed to reach the client verbatim.
    The status and code are fixed where the error is raised.
    """

    status_code = 500

    def __init__(self, code: ErrorCode, message: str, status_code: int = None, details=None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self) -> dict:
        body = {"code": self.code.value, "message": self.message}
        if self.details is not None:
            body["details"] = self.details
        return body

    def __repr__(self):
        return f"{type(self).__name__}({self.code.value!r}, {self.message!r})"


class ValidationError(AppError):
    status_code = 400

    def __init__(self, message: str = "Validation failed", details=None):
        super().__init__(ErrorCode.VALIDATION_ERROR, message, details=details)


class OtpError(AppError):
    status_code = 400


class OtpCooldownError(OtpError):
    status_code = 429

    def __init__(self, retry_after: int):
        super().__init__(
            ErrorCode.OTP_COOLDOWN_ACTIVE,
            f"Please wait {retry_after} seconds before requesting another code",
            details={"retryAfter": retry_after},
        )
        self.retry_after = retry_after


class TokenError(AppError):
    status_code = 401


class RateLimitError(AppError):
    status_code = 429

    def __init__(self, retry_after: int, message: str = "Too many requests"):
        super().__init__(ErrorCode.RATE_LIMIT_EXCEEDED, message, details={"retryAfter": retry_after})
        self.retry_after = retry_after


class NotFoundError(AppError):
    status_code = 404


class InfrastructureError(AppError):
    status_code = 500
