"""JSON envelopes for the versioned API.

Successful ``/v1`` JSON responses are wrapped as ``{"data", "meta"}`` by the
app middleware; failures are rendered as ``{"error", "meta"}`` by the
exception handlers. Both carry the request id in ``meta``.
"""
from __future__ import annotations

from typing import Any, Generic, TypeVar
from uuid import uuid4

from fastapi import Request
from pydantic import BaseModel


API_VERSION = "v1"
VERSION_PREFIX = f"/{API_VERSION}"

# Documentation payloads are served as-is.
UNWRAPPED_PREFIXES = (f"{VERSION_PREFIX}/openapi.json", f"{VERSION_PREFIX}/docs")

T = TypeVar("T")


class ResponseMeta(BaseModel):
    request_id: str
    api_version: str = API_VERSION


class ErrorDetail(BaseModel):
    code: str
    message: str
    details: dict[str, Any] | None = None


class SuccessEnvelope(BaseModel, Generic[T]):
    data: T
    meta: ResponseMeta


class ErrorEnvelope(BaseModel):
    error: ErrorDetail
    meta: ResponseMeta


def request_id_of(request: Request) -> str:
    # Handlers can run before the middleware stored an id (e.g. routing errors).
    request_id = getattr(request.state, "request_id", None) or request.headers.get("X-Request-Id")
    if not request_id:
        request_id = str(uuid4())
    request.state.request_id = request_id
    return request_id


def is_versioned_request(request: Request) -> bool:
    return request.url.path.startswith(VERSION_PREFIX)


def wants_envelope(request: Request, status_code: int, content_type: str) -> bool:
    return (
        is_versioned_request(request)
        and not request.url.path.startswith(UNWRAPPED_PREFIXES)
        and status_code < 400
        and content_type.startswith("application/json")
    )


def success_body(request_id: str, payload: Any) -> dict[str, Any]:
    return {"data": payload, "meta": ResponseMeta(request_id=request_id).model_dump()}


def error_response(
    *,
    request: Request,
    code: str,
    message: str,
    details: dict[str, Any] | None = None,
) -> dict[str, Any]:
    envelope = ErrorEnvelope(
        error=ErrorDetail(code=code, message=message, details=details),
        meta=ResponseMeta(request_id=request_id_of(request)),
    )
    body = envelope.model_dump()
    if details is None:
        body["error"].pop("details")
    return body
