import re

from utils.errors import ValidationError

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
MAX_EMAIL_LENGTH = 255


def normalize_email(value) -> str:
    return value.strip().lower() if isinstance(value, str) else ""


def _email_problem(value):
    if value is None or (isinstance(value, str) and not value.strip()):
        return "Email is required"
    if not isinstance(value, str):
        return "Email must be a string"
    email = normalize_email(value)
    if len(email) > MAX_EMAIL_LENGTH:
        return f"Email must not exceed {MAX_EMAIL_LENGTH} characters"
    if not EMAIL_RE.match(email):
        return "Please provide a valid email address"
    return None


def _code_problem(value, length: int):
    if value is None or value == "":
        return "OTP code is required"
    if not isinstance(value, str):
        return "OTP code must be a string"
    if not value.isascii() or not value.isdigit():
        return "OTP code must contain only numbers"
    if len(value) != length:
        return f"OTP code must be exactly {length} digits"
    return None


def _raise_if(problems):
    details = [{"field": f, "message": m} for f, m in problems if m]
    if details:
        raise ValidationError("Validation failed", details=details)


def validate_request_otp(data: dict) -> str:
    """Returns the normalised email."""
    _raise_if([("email", _email_problem(data.get("email")))])
    return normalize_email(data["email"])


def validate_verify_otp(data: dict, code_length: int):
    """Returns (email, code)."""
    _raise_if([
        ("email", _email_problem(data.get("email"))),
        ("code", _code_problem(data.get("code"), code_length)),
    ])
    return normalize_email(data["email"]), data["code"]


def validate_refresh_body(data: dict) -> None:
    token = data.get("refreshToken")
    if token is not None and not isinstance(token, str):
        _raise_if([("refreshToken", "Refresh token must be a string")])
