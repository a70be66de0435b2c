from flask import Blueprint, current_app, g, jsonify, request

from security.delivery import (
    BEARER,
    body_tokens,
    clear_tokens,
    deliver_tokens,
    extract_refresh_token,
    has_auth_cookies,
    resolve_auth_method,
)
from services import get_container
from utils.audit import client_ip
from utils.auth_context import login_required
from utils.errors import ErrorCode, TokenError
from utils.validators import validate_refresh_body, validate_request_otp, validate_verify_otp

auth_bp = Blueprint("auth", __name__, url_prefix="/auth")


def _body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


@auth_bp.post("/request-otp")
def request_otp():
    email = validate_request_otp(_body())

    get_container().auth_service.request_otp(email, client_ip())

    return jsonify(
        success=True,
        message="Verification code sent to your email",
        data={
            "email": email,
            "expiresInMinutes": max(current_app.config.get("OTP_TTL_SECONDS", 600) // 60, 1),
            "cooldownSeconds": current_app.config.get("OTP_COOLDOWN_SECONDS", 60),
        },
    ), 200


@auth_bp.post("/verify-otp")
def verify_otp():
    email, code = validate_verify_otp(_body(), current_app.config.get("OTP_LENGTH", 6))
    method = resolve_auth_method()

    result = get_container().auth_service.verify_otp_and_login(email, code, client_ip())

    data = {"user": result.user.to_public()}
    tokens = body_tokens(result.tokens, method)
    if tokens is not None:
        data["tokens"] = tokens

    resp = jsonify(success=True, message="Authentication successful", data=data)
    deliver_tokens(resp, result.tokens, method)
    return resp, 200


@auth_bp.post("/refresh")
def refresh():
    body = _body()
    validate_refresh_body(body)
    method = resolve_auth_method()

    raw_token = extract_refresh_token(body)
    if not raw_token:
        raise TokenError(ErrorCode.TOKEN_REQUIRED, "Refresh token is required")

    tokens = get_container().auth_service.refresh_tokens(raw_token)

    in_body = body_tokens(tokens, method)
    data = {"tokens": in_body} if in_body is not None else {}

    resp = jsonify(success=True, message="Tokens refreshed successfully", data=data)
    deliver_tokens(resp, tokens, method)
    return resp, 200


@auth_bp.post("/logout")
def logout():
    body = _body()
    method = resolve_auth_method()
    raw_token = extract_refresh_token(body)

    get_container().auth_service.logout(raw_token)

    resp = jsonify(success=True, message="Logged out successfully", data={})
    if method != BEARER or has_auth_cookies():
        clear_tokens(resp)
    return resp, 200


@auth_bp.post("/logout-all")
@login_required
def logout_all():
    count = get_container().auth_service.logout_all(g.user_id)

    resp = jsonify(success=True, message="Logged out everywhere", data={"revokedSessions": count})
    clear_tokens(resp)
    return resp, 200


@auth_bp.get("/me")
@login_required
def me():
    user = get_container().auth_service.get_profile(g.user_id)
    return jsonify(success=True, data={"user": user.to_public()}), 200
