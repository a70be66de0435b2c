import logging

from flask import current_app, jsonify, request
from werkzeug.exceptions import HTTPException

from utils.clock import utcnow
from utils.errors import AppError, ErrorCode

logger = logging.getLogger(__name__)

_HTTP_CODES = {
    400: ErrorCode.VALIDATION_ERROR,
    401: ErrorCode.UNAUTHORIZED,
    404: ErrorCode.ENDPOINT_NOT_FOUND,
    405: ErrorCode.METHOD_NOT_ALLOWED,
    429: ErrorCode.RATE_LIMIT_EXCEEDED,
}


def _envelope(error: dict, status: int):
    resp = jsonify(
        success=False,
        error=error,
        timestamp=utcnow().isoformat() + "Z",
        path=request.path,
        method=request.method,
    )
    resp.status_code = status
    return resp


def error_response(code: ErrorCode, message: str, status: int):
    return _envelope({"code": code.value, "message": message}, status)


def register_error_handlers(app):
    @app.errorhandler(AppError)
    def _app_error(exc: AppError):
        if exc.status_code >= 500:
            logger.error(
                "%s on %s %s: %s", exc.code.value, request.method, request.path, exc.message,
                exc_info=exc,
            )
        else:
            logger.warning("%s on %s %s: %s", exc.code.value, request.method, request.path, exc.message)

        resp = _envelope(exc.to_dict(), exc.status_code)
        retry_after = getattr(exc, "retry_after", None)
        if retry_after:
            resp.headers["Retry-After"] = str(retry_after)
        return resp

    @app.errorhandler(HTTPException)
    def _http_error(exc: HTTPException):
        status = exc.code or 500
        code = _HTTP_CODES.get(status, ErrorCode.INTERNAL_SERVER_ERROR)
        if status == 404:
            message = f"Endpoint {request.method} {request.path} not found"
        else:
            message = exc.description or exc.name
        return error_response(code, message, status)

    @app.errorhandler(Exception)
    def _unexpected(exc: Exception):
        logger.exception(
            "Unexpected error on %s %s from %s",
            request.method, request.path, request.headers.get("User-Agent", "-"),
        )
        if current_app.config.get("ENVIRONMENT") == "production":
            message = "Internal server error"
        else:
            message = str(exc) or type(exc).__name__
        return error_response(ErrorCode.INTERNAL_SERVER_ERROR, message, 500)
