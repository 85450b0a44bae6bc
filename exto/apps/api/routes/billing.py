from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict

from exto.apps.api.deps import get_scope, get_services
from exto.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from exto.apps.api.response import SuccessEnvelope
from exto.domain.schema import Billing
from exto.services.category_data import TenantScope
from exto.services.container import Services


router = APIRouter(tags=["billing"], responses=DEFAULT_ERROR_RESPONSES)


class SubscriptionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    organization_id: str
    stripe_sub_id: str
    started_at: datetime | None = None
    ended_at: datetime | None = None
    trial_period_days: int
    billing_cycle: str
    status: str
    is_current: bool


class SetupIntentResponse(BaseModel):
    customer_id: str
    ephemeral_key: str
    client_secret: str


class FreeTrialResponse(BaseModel):
    remaining_scans: int
    record_count: int
    trial_end_date: datetime
    days_left: int


@router.get("/subscription", response_model=SuccessEnvelope[SubscriptionResponse] | SubscriptionResponse)
async def get_my_subscription(
    scope: TenantScope = Depends(get_scope),
    services: Services = Depends(get_services),
) -> SubscriptionResponse:
    subscription = await services.payments.get_my_subscription(scope.org_id)
    return SubscriptionResponse.model_validate(subscription)


@router.post("/payment/setup", response_model=SuccessEnvelope[SetupIntentResponse] | SetupIntentResponse)
async def create_setup_intent(
    billing: Billing,
    scope: TenantScope = Depends(get_scope),
    services: Services = Depends(get_services),
) -> SetupIntentResponse:
    result = await services.payments.create_setup_intent(scope.org_id, billing, updated_by=scope.user_id)
    return SetupIntentResponse(
        customer_id=result.customer_id,
        ephemeral_key=result.ephemeral_key,
        client_secret=result.client_secret,
    )


@router.post(
    "/payment/subscribe",
    status_code=201,
    response_model=SuccessEnvelope[SubscriptionResponse] | SubscriptionResponse,
)
async def create_subscription(
    scope: TenantScope = Depends(get_scope),
    services: Services = Depends(get_services),
) -> SubscriptionResponse:
    subscription = await services.payments.create_subscription(scope.org_id, created_by=scope.user_id)
    return SubscriptionResponse.model_validate(subscription)


@router.post("/payment/cancel", response_model=SuccessEnvelope[SubscriptionResponse] | SubscriptionResponse)
async def cancel_subscription(
    scope: TenantScope = Depends(get_scope),
    services: Services = Depends(get_services),
) -> SubscriptionResponse:
    subscription = await services.payments.cancel_subscription(scope.org_id, updated_by=scope.user_id)
    return SubscriptionResponse.model_validate(subscription)


@router.get("/payment/free-trial", response_model=SuccessEnvelope[FreeTrialResponse] | FreeTrialResponse)
async def get_free_trial_info(
    scope: TenantScope = Depends(get_scope),
    services: Services = Depends(get_services),
) -> FreeTrialResponse:
    info = await services.organizations.free_trial_info(scope.org_id, scope.org_slug)
    return FreeTrialResponse(
        remaining_scans=info.remaining_scans,
        record_count=info.record_count,
        trial_end_date=info.trial_end_date,
        days_left=info.days_left,
    )
