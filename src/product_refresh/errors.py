"""Error taxonomy and uniform error payloads.

Every failure the service reports carries an :class:`ErrorCode`. Codes are
grouped into an :class:`ErrorKind` which decides how the refresh worker
reacts (retry, skip, mark unavailable, abort) and map to an HTTP status for
the wire-level envelope::

    {"success": false,
     "error": {"code": "...", "message": "...", "details": {...}},
     "correlation_id": "..."}
"""

from enum import Enum
from typing import Any

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
import structlog

from product_refresh.logging_config import CORRELATION_HEADER

logger = structlog.get_logger()


class ErrorCode(str, Enum):
    """Internal error codes."""

    # Validation
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_ASIN = "INVALID_ASIN"
    INVALID_MARKETPLACE = "INVALID_MARKETPLACE"
    MISSING_REQUIRED_FIELD = "MISSING_REQUIRED_FIELD"
    INVALID_REQUEST_BODY = "INVALID_REQUEST_BODY"

    # Auth
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    INVALID_API_KEY = "INVALID_API_KEY"

    # Lookups
    PRODUCT_NOT_FOUND = "PRODUCT_NOT_FOUND"
    MARKETPLACE_NOT_FOUND = "MARKETPLACE_NOT_FOUND"
    RESOURCE_NOT_FOUND = "RESOURCE_NOT_FOUND"

    # Rate limiting / concurrency
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    REFRESH_IN_PROGRESS = "REFRESH_IN_PROGRESS"

    # Upstream
    PAAPI_ERROR = "PAAPI_ERROR"
    PAAPI_ITEM_NOT_ACCESSIBLE = "PAAPI_ITEM_NOT_ACCESSIBLE"
    PAAPI_INVALID_PARAMETER = "PAAPI_INVALID_PARAMETER"
    PAAPI_THROTTLED = "PAAPI_THROTTLED"
    PAAPI_TIMEOUT = "PAAPI_TIMEOUT"
    NETWORK_ERROR = "NETWORK_ERROR"
    CIRCUIT_BREAKER_OPEN = "CIRCUIT_BREAKER_OPEN"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"

    # Store / internal
    DATABASE_ERROR = "DATABASE_ERROR"
    DATABASE_QUERY_FAILED = "DATABASE_QUERY_FAILED"
    INTERNAL_SERVER_ERROR = "INTERNAL_SERVER_ERROR"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


class ErrorKind(str, Enum):
    """How a failure should be treated by callers."""

    VALIDATION = "validation"
    AUTH = "auth"
    UPSTREAM_ITEM = "upstream_item"
    UPSTREAM_TRANSIENT = "upstream_transient"
    CIRCUIT_OPEN = "circuit_open"
    STORE = "store"
    CONFIGURATION = "configuration"


ERROR_STATUS_CODES: dict[ErrorCode, int] = {
    ErrorCode.VALIDATION_ERROR: 400,
    ErrorCode.INVALID_ASIN: 400,
    ErrorCode.INVALID_MARKETPLACE: 400,
    ErrorCode.MISSING_REQUIRED_FIELD: 400,
    ErrorCode.INVALID_REQUEST_BODY: 400,
    ErrorCode.UNAUTHORIZED: 401,
    ErrorCode.INVALID_API_KEY: 401,
    ErrorCode.FORBIDDEN: 403,
    ErrorCode.PRODUCT_NOT_FOUND: 404,
    ErrorCode.MARKETPLACE_NOT_FOUND: 404,
    ErrorCode.RESOURCE_NOT_FOUND: 404,
    ErrorCode.REFRESH_IN_PROGRESS: 409,
    ErrorCode.RATE_LIMIT_EXCEEDED: 429,
    ErrorCode.PAAPI_ERROR: 502,
    ErrorCode.PAAPI_ITEM_NOT_ACCESSIBLE: 502,
    ErrorCode.PAAPI_INVALID_PARAMETER: 502,
    ErrorCode.PAAPI_THROTTLED: 502,
    ErrorCode.PAAPI_TIMEOUT: 502,
    ErrorCode.NETWORK_ERROR: 502,
    ErrorCode.CIRCUIT_BREAKER_OPEN: 503,
    ErrorCode.SERVICE_UNAVAILABLE: 503,
    ErrorCode.DATABASE_ERROR: 500,
    ErrorCode.DATABASE_QUERY_FAILED: 500,
    ErrorCode.INTERNAL_SERVER_ERROR: 500,
    ErrorCode.UNKNOWN_ERROR: 500,
}

_KINDS: dict[ErrorCode, ErrorKind] = {
    ErrorCode.VALIDATION_ERROR: ErrorKind.VALIDATION,
    ErrorCode.INVALID_ASIN: ErrorKind.VALIDATION,
    ErrorCode.INVALID_MARKETPLACE: ErrorKind.VALIDATION,
    ErrorCode.MISSING_REQUIRED_FIELD: ErrorKind.VALIDATION,
    ErrorCode.INVALID_REQUEST_BODY: ErrorKind.VALIDATION,
    ErrorCode.UNAUTHORIZED: ErrorKind.AUTH,
    ErrorCode.FORBIDDEN: ErrorKind.AUTH,
    ErrorCode.INVALID_API_KEY: ErrorKind.AUTH,
    ErrorCode.PAAPI_ITEM_NOT_ACCESSIBLE: ErrorKind.UPSTREAM_ITEM,
    ErrorCode.PAAPI_INVALID_PARAMETER: ErrorKind.UPSTREAM_ITEM,
    ErrorCode.CIRCUIT_BREAKER_OPEN: ErrorKind.CIRCUIT_OPEN,
    ErrorCode.DATABASE_ERROR: ErrorKind.STORE,
    ErrorCode.DATABASE_QUERY_FAILED: ErrorKind.STORE,
    ErrorCode.INTERNAL_SERVER_ERROR: ErrorKind.CONFIGURATION,
}

# Failures that another attempt cannot fix
NON_RETRYABLE_KINDS = {ErrorKind.UPSTREAM_ITEM, ErrorKind.CIRCUIT_OPEN}


def error_kind(code: ErrorCode | str) -> ErrorKind:
    """Classify an error code. Unknown upstream codes count as transient."""
    try:
        code = ErrorCode(code)
    except ValueError:
        return ErrorKind.UPSTREAM_TRANSIENT
    return _KINDS.get(code, ErrorKind.UPSTREAM_TRANSIENT)


def is_retryable(code: ErrorCode | str) -> bool:
    return error_kind(code) not in NON_RETRYABLE_KINDS


def status_for(code: ErrorCode | str) -> int:
    try:
        return ERROR_STATUS_CODES[ErrorCode(code)]
    except (ValueError, KeyError):
        return 500


class AppError(Exception):
    """Base class for errors rendered into the error envelope."""

    code: ErrorCode = ErrorCode.INTERNAL_SERVER_ERROR

    def __init__(
        self,
        message: str,
        code: ErrorCode | str | None = None,
        details: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        status_code: int | None = None,
    ):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.details = details or {}
        self.headers = headers or {}
        self._status_code = status_code

    @property
    def code_value(self) -> str:
        return self.code.value if isinstance(self.code, ErrorCode) else str(self.code)

    @property
    def status_code(self) -> int:
        return self._status_code or status_for(self.code)

    @property
    def kind(self) -> ErrorKind:
        return error_kind(self.code)


class ConfigurationError(AppError):
    code = ErrorCode.INTERNAL_SERVER_ERROR


class StoreError(AppError):
    code = ErrorCode.DATABASE_ERROR


class NotFoundError(AppError):
    code = ErrorCode.RESOURCE_NOT_FOUND


class RefreshInProgressError(AppError):
    code = ErrorCode.REFRESH_IN_PROGRESS


def create_error_response(
    code: ErrorCode | str,
    message: str,
    correlation_id: str | None = None,
    details: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Build the error envelope body."""
    error: dict[str, Any] = {
        "code": code.value if isinstance(code, ErrorCode) else code,
        "message": message,
    }
    if details:
        error["details"] = details
    body: dict[str, Any] = {"success": False, "error": error}
    if correlation_id:
        body["correlation_id"] = correlation_id
    return body


def error_json_response(
    code: ErrorCode | str,
    message: str,
    correlation_id: str | None = None,
    details: dict[str, Any] | None = None,
    status_code: int | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    response_headers = dict(headers or {})
    if correlation_id:
        response_headers[CORRELATION_HEADER] = correlation_id
    return JSONResponse(
        status_code=status_code or status_for(code),
        content=create_error_response(code, message, correlation_id, details),
        headers=response_headers,
    )


def correlation_id_from(request: Request) -> str | None:
    return getattr(request.state, "correlation_id", None)


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """FastAPI exception handler rendering :class:`AppError` as the envelope."""
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        "Request failed",
        path=request.url.path,
        error_code=exc.code_value,
        error=exc.message,
    )
    return error_json_response(
        exc.code,
        exc.message,
        correlation_id=correlation_id_from(request),
        details=exc.details,
        status_code=exc.status_code,
        headers=exc.headers,
    )


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Render request body validation failures as ``VALIDATION_ERROR``."""
    errors = [
        {"loc": list(error["loc"]), "msg": error["msg"], "type": error["type"]}
        for error in exc.errors()
    ]
    logger.warning("Request validation failed", path=request.url.path, errors=errors)
    return error_json_response(
        ErrorCode.VALIDATION_ERROR,
        errors[0]["msg"] if errors else "Request validation failed",
        correlation_id=correlation_id_from(request),
        details={"validation_errors": errors},
    )


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("Unhandled error", path=request.url.path, exc_info=exc)
    return error_json_response(
        ErrorCode.INTERNAL_SERVER_ERROR,
        "An unexpected error occurred",
        correlation_id=correlation_id_from(request),
    )
