from functools import wraps
from flask import g

from security.delivery import extract_access_token
from services import get_container
from utils.errors import ErrorCode, TokenError


def load_current_user():
    """
    Reads the access token (bearer header, then cookie) and exposes the
    caller's id as ``g.user_id``. Raises TokenError when it is missing or bad.
    """
    token = extract_access_token()
    if not token:
        raise TokenError(ErrorCode.UNAUTHORIZED, "Access token is required")

    claims = get_container().token_service.verify_access(token)
    g.user_id = claims["sub"]
    g.token_claims = claims
    return g.user_id


def login_required(fn):
    @wraps(fn)
    def wrapper(*args, **kwargs):
        load_current_user()
        return fn(*args, **kwargs)
    return wrapper
