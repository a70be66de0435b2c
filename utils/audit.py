import json
import logging

from flask import has_request_context, request

audit_logger = logging.getLogger("audit")


def client_ip() -> str:
    if not has_request_context():
        return "unknown"
    forwarded = request.headers.get("X-Forwarded-For", "")
    return forwarded.split(",")[0].strip() or request.remote_addr or "unknown"


def mask_email(email: str) -> str:
    local, sep, domain = (email or "").partition("@")
    if not sep or len(local) <= 2:
        return email
    return f"{local[:2]}***@{domain}"


def mask_ip(ip: str) -> str:
    parts = (ip or "").split(".")
    if len(parts) == 4:
        return f"{parts[0]}.{parts[1]}.***.***"
    return (ip or "")[:4] + "***"


def mask_token(token: str) -> str:
    if not token or len(token) <= 8:
        return "***"
    return f"{token[:4]}***{token[-4:]}"


def log_event(action: str, user_id=None, metadata=None, level=logging.INFO):
    """Writes one security event line, e.g. OTP_REQUESTED or LOGIN_SUCCESS."""
    record = {"action": action, "user_id": user_id}
    if has_request_context():
        record["ip"] = mask_ip(client_ip())
        user_agent = request.headers.get("User-Agent", "")
        record["user_agent"] = user_agent[:255] if user_agent else None
    if metadata:
        record["metadata"] = metadata
    audit_logger.log(level, json.dumps(record, default=str))
