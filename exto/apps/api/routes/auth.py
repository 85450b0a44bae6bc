from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from exto.apps.api.deps import get_caller_email, get_request_context, get_services, page_params
from exto.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from exto.apps.api.response import SuccessEnvelope
from exto.persistence.pagination import PageRequest, PageResponse
from exto.services.container import Services
from exto.services.identity import RequestContext, RequestUser


router = APIRouter(tags=["auth"], responses=DEFAULT_ERROR_RESPONSES)


class SignUpRequest(BaseModel):
    first_name: str = Field(min_length=1)
    last_name: str = ""
    # Informational; the verified provider comes from X-Auth-Provider.
    provider: str | None = None


class DeleteMeResponse(BaseModel):
    deleted_organization_ids: list[str]


class UserResponse(BaseModel):
    id: str
    email: str
    first_name: str
    last_name: str
    role: str
    is_active: bool
    created_at: datetime | None = None


@router.post(
    "/auth/sign-up",
    status_code=201,
    response_model=SuccessEnvelope[RequestContext] | RequestContext,
)
async def sign_up(
    payload: SignUpRequest,
    email: str = Depends(get_caller_email),
    services: Services = Depends(get_services),
) -> RequestContext:
    # The email is taken from the verified token, never from the body.
    return await services.identity.sign_up(email, payload.first_name, payload.last_name)


@router.post("/auth/login", response_model=SuccessEnvelope[RequestUser] | RequestUser)
async def login(context: RequestContext = Depends(get_request_context)) -> RequestUser:
    return context.user


@router.get("/me", response_model=SuccessEnvelope[RequestContext] | RequestContext)
async def get_me(context: RequestContext = Depends(get_request_context)) -> RequestContext:
    return context


@router.delete("/me", response_model=SuccessEnvelope[DeleteMeResponse] | DeleteMeResponse)
async def delete_me(
    context: RequestContext = Depends(get_request_context),
    services: Services = Depends(get_services),
) -> DeleteMeResponse:
    deleted = await services.identity.delete_me(context)
    return DeleteMeResponse(deleted_organization_ids=deleted)


@router.get(
    "/users",
    response_model=SuccessEnvelope[PageResponse[UserResponse]] | PageResponse[UserResponse],
)
async def list_users(
    page: PageRequest = Depends(page_params),
    context: RequestContext = Depends(get_request_context),
    services: Services = Depends(get_services),
) -> PageResponse[UserResponse]:
    users, total = await services.identity.list_users(context.org.id, page)
    return PageResponse[UserResponse](
        total_count=total,
        page=page.page,
        page_size=page.page_size,
        items=[UserResponse.model_validate(user, from_attributes=True) for user in users],
    )
