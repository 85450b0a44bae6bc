from __future__ import annotations

import asyncio
import logging
from typing import Any

from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from exto.apps.api.response import error_response, is_versioned_request
from exto.core.errors import (
    AuthError,
    ConflictError,
    DatabaseError,
    ExtoError,
    ExtractionError,
    ExtractionParseError,
    FilePathExhaustedError,
    InvalidInputError,
    NotFoundError,
    PaymentProviderError,
    ProviderConfigError,
)


logger = logging.getLogger(__name__)

_DEFAULT_ERROR_CODES: dict[int, str] = {
    400: "BAD_REQUEST",
    401: "AUTH_UNAUTHORIZED",
    403: "AUTH_FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    409: "CONFLICT",
    413: "PAYLOAD_TOO_LARGE",
    422: "VALIDATION_ERROR",
    500: "INTERNAL_ERROR",
    502: "UPSTREAM_ERROR",
    503: "SERVICE_UNAVAILABLE",
}

# Most specific class first; the first isinstance match wins.
_DOMAIN_ERRORS: tuple[tuple[type[ExtoError], int, str], ...] = (
    (InvalidInputError, 400, "BAD_REQUEST"),
    (AuthError, 401, "AUTH_UNAUTHORIZED"),
    (NotFoundError, 404, "NOT_FOUND"),
    (ConflictError, 409, "CONFLICT"),
    (ExtractionParseError, 502, "EXTRACTION_PARSE_FAILED"),
    (ExtractionError, 502, "EXTRACTION_FAILED"),
    (PaymentProviderError, 502, "PAYMENT_PROVIDER_ERROR"),
    (ProviderConfigError, 503, "PROVIDER_NOT_CONFIGURED"),
    (FilePathExhaustedError, 503, "FILE_PATH_EXHAUSTED"),
    (DatabaseError, 500, "DATABASE_ERROR"),
)


def _default_code(status_code: int) -> str:
    return _DEFAULT_ERROR_CODES.get(status_code, "UNKNOWN_ERROR")


def classify(exc: ExtoError) -> tuple[int, str]:
    for error_type, status_code, code in _DOMAIN_ERRORS:
        if isinstance(exc, error_type):
            return status_code, code
    return 500, "INTERNAL_ERROR"


def _split_detail(detail: Any, status_code: int) -> tuple[str, str, dict[str, Any] | None]:
    if isinstance(detail, dict):
        code = str(detail.get("code") or _default_code(status_code))
        message = str(detail.get("message") or "Request failed")
        details = {k: v for k, v in detail.items() if k not in {"code", "message"}}
        return code, message, details or None
    if isinstance(detail, str):
        return _default_code(status_code), detail, None
    return _default_code(status_code), "Request failed", None


async def http_exception_handler(request: Request, exc: HTTPException | StarletteHTTPException) -> JSONResponse:
    if not is_versioned_request(request):
        return JSONResponse(content={"detail": exc.detail}, status_code=exc.status_code, headers=exc.headers)
    code, message, details = _split_detail(exc.detail, exc.status_code)
    payload = error_response(request=request, code=code, message=message, details=details)
    return JSONResponse(content=payload, status_code=exc.status_code, headers=exc.headers)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [{k: v for k, v in error.items() if k != "ctx"} for error in exc.errors()]
    if not is_versioned_request(request):
        return JSONResponse(content={"detail": errors}, status_code=422)
    payload = error_response(
        request=request,
        code="REQUEST_VALIDATION_ERROR",
        message="Validation error",
        details={"errors": errors},
    )
    return JSONResponse(content=payload, status_code=422)


async def exto_exception_handler(request: Request, exc: ExtoError) -> JSONResponse:
    status_code, code = classify(exc)
    if status_code >= 500:
        # Keep provider and database detail in the logs, not in the response.
        logger.error("request failed path=%s code=%s error=%s", request.url.path, code, exc, exc_info=exc)
        message = "Upstream provider error" if status_code == 502 else "Internal server error"
        if status_code == 503:
            message = "Service unavailable"
    else:
        message = str(exc) or "Request failed"
    headers = {"WWW-Authenticate": "Bearer"} if status_code == 401 else None
    payload = error_response(request=request, code=code, message=message)
    return JSONResponse(content=payload, status_code=status_code, headers=headers)


async def timeout_exception_handler(request: Request, exc: asyncio.TimeoutError) -> JSONResponse:
    logger.error("request timed out path=%s", request.url.path)
    payload = error_response(request=request, code="SERVICE_UNAVAILABLE", message="Operation timed out")
    return JSONResponse(content=payload, status_code=503)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled error path=%s", request.url.path, exc_info=exc)
    if not is_versioned_request(request):
        return JSONResponse(content={"detail": "Internal Server Error"}, status_code=500)
    payload = error_response(request=request, code="INTERNAL_ERROR", message="Internal server error")
    return JSONResponse(content=payload, status_code=500)
