from __future__ import annotations

from fastapi import Depends, Header, HTTPException, Query, Request, UploadFile, status

from exto.core.config import get_settings
from exto.core.errors import InvalidInputError
from exto.domain.models import is_record_id
from exto.persistence.pagination import DEFAULT_PAGE_SIZE, PageRequest
from exto.services.category_data import TenantScope
from exto.services.container import Services
from exto.services.identity import RequestContext, bearer_token


def get_services(request: Request) -> Services:
    # One service graph per app instance, built in create_app.
    return request.app.state.services


async def get_caller_email(
    request: Request,
    services: Services = Depends(get_services),
    auth_provider: str | None = Header(default=None, alias="X-Auth-Provider"),
    authorization: str | None = Header(default=None),
) -> str:
    """Email of the caller, from a verified provider token."""
    settings = get_settings()
    dev_email = request.headers.get("X-User-Email")
    if settings.auth_dev_bypass and dev_email:
        return dev_email.lower()
    if not auth_provider:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"code": "AUTH_PROVIDER_REQUIRED", "message": "X-Auth-Provider header is required"},
        )
    return await services.verifier.verify(auth_provider, bearer_token(authorization))


async def get_request_context(
    request: Request,
    email: str = Depends(get_caller_email),
    services: Services = Depends(get_services),
) -> RequestContext:
    context = await services.resolver.resolve(email)
    await services.last_active.touch(context.org.id)
    request.state.org_id = context.org.id
    return context


def get_scope(context: RequestContext = Depends(get_request_context)) -> TenantScope:
    return TenantScope(org_id=context.org.id, org_slug=context.org.slug, user_id=context.user.id)


def page_params(
    page: int = Query(default=1),
    page_size: int = Query(default=DEFAULT_PAGE_SIZE),
) -> PageRequest:
    return PageRequest.normalize(page, page_size)


async def read_upload(file: UploadFile) -> bytes:
    """Read an uploaded file, enforcing the configured size limit."""
    limit = get_settings().max_upload_bytes
    data = await file.read(limit + 1)
    if len(data) > limit:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail={"code": "PAYLOAD_TOO_LARGE", "message": f"Upload exceeds {limit} bytes"},
        )
    if not data:
        raise InvalidInputError("Uploaded file is empty")
    return data


def require_id(value: str, what: str) -> str:
    if not is_record_id(value):
        raise InvalidInputError(f"Invalid {what} ID format")
    return value
