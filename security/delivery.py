"""
Decides where tokens travel: HTTP-only cookies or the JSON body plus an
``Authorization: Bearer`` header. The choice is read from every request and
never remembered between requests.
"""
from flask import current_app, request

from security.tokens import TokenPair

AUTH_METHOD_HEADER = "X-Auth-Method"
COOKIE = "cookie"
BEARER = "bearer"
AUTH_METHODS = (COOKIE, BEARER)


def resolve_auth_method(req=None) -> str:
    req = req or request
    declared = req.headers.get(AUTH_METHOD_HEADER) or req.args.get("authMethod") or ""
    declared = declared.strip().lower()
    return declared if declared in AUTH_METHODS else COOKIE


def _cookie_options() -> dict:
    return {
        "httponly": True,
        "secure": current_app.config.get("AUTH_COOKIE_SECURE", False),
        "samesite": current_app.config.get("AUTH_COOKIE_SAMESITE", "Lax"),
    }


def _cookie_names():
    return (
        current_app.config.get("ACCESS_COOKIE_NAME", "accessToken"),
        current_app.config.get("REFRESH_COOKIE_NAME", "refreshToken"),
    )


def body_tokens(tokens: TokenPair, method: str):
    """The ``tokens`` field for the JSON body; cookie mode keeps them out of it."""
    return tokens.to_dict() if method == BEARER else None


def deliver_tokens(resp, tokens: TokenPair, method: str):
    """Sets both auth cookies in cookie mode; bearer mode leaves the response alone."""
    if method == BEARER:
        return resp

    access_name, refresh_name = _cookie_names()
    options = _cookie_options()
    resp.set_cookie(
        access_name,
        tokens.access_token,
        max_age=current_app.config.get("JWT_ACCESS_TTL_SECONDS", 15 * 60),
        path="/",
        **options,
    )
    # Only sent back to /auth/* (refresh and logout)
    resp.set_cookie(
        refresh_name,
        tokens.refresh_token,
        max_age=current_app.config.get("JWT_REFRESH_TTL_SECONDS", 7 * 24 * 60 * 60),
        path=current_app.config.get("REFRESH_COOKIE_PATH", "/auth"),
        **options,
    )
    return resp


def clear_tokens(resp):
    access_name, refresh_name = _cookie_names()
    options = _cookie_options()
    resp.delete_cookie(access_name, path="/", **options)
    resp.delete_cookie(refresh_name, path=current_app.config.get("REFRESH_COOKIE_PATH", "/auth"), **options)
    return resp


def has_auth_cookies(req=None) -> bool:
    req = req or request
    return any(req.cookies.get(name) for name in _cookie_names())


def extract_access_token(req=None):
    req = req or request
    header = req.headers.get("Authorization", "")
    if header[:7].lower() == "bearer ":
        token = header[7:].strip()
        if token:
            return token
    return req.cookies.get(_cookie_names()[0]) or None


def extract_refresh_token(body: dict, req=None):
    req = req or request
    token = body.get("refreshToken") if isinstance(body, dict) else None
    if isinstance(token, str) and token:
        return token
    return req.cookies.get(_cookie_names()[1]) or None
