from __future__ import annotations

from typing import Any

from exto.apps.api.response import API_VERSION, ErrorEnvelope

# status -> (description, error code, example message)
_DOCUMENTED_ERRORS: dict[int, tuple[str, str, str]] = {
    400: ("Bad request", "BAD_REQUEST", "Invalid category ID format"),
    401: ("Unauthorized", "AUTH_UNAUTHORIZED", "User not found or not authorized"),
    404: ("Not found", "NOT_FOUND", "Category not found"),
    409: ("Conflict", "CONFLICT", "Identity already exists"),
    422: ("Validation error", "REQUEST_VALIDATION_ERROR", "Validation error"),
    500: ("Internal server error", "INTERNAL_ERROR", "Internal server error"),
    502: ("Upstream provider error", "EXTRACTION_FAILED", "Extraction model reply could not be parsed"),
    503: ("Service unavailable", "SERVICE_UNAVAILABLE", "Service unavailable"),
}


def error_response_doc(description: str, code: str, message: str) -> dict[str, Any]:
    """OpenAPI ``responses`` entry showing the error envelope for one status."""
    example = {
        "error": {"code": code, "message": message},
        "meta": {"request_id": "req_example", "api_version": API_VERSION},
    }
    return {
        "model": ErrorEnvelope,
        "description": description,
        "content": {"application/json": {"example": example}},
    }


DEFAULT_ERROR_RESPONSES: dict[int, dict[str, Any]] = {
    status_code: error_response_doc(*entry) for status_code, entry in _DOCUMENTED_ERRORS.items()
}
