from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from exto.domain.schema import Billing


@dataclass(frozen=True)
class ExternalSubscription:
    id: str
    status: str


class PaymentGateway(Protocol):
    async def create_customer(self, *, org_id: str, org_name: str, billing: Billing) -> str:
        ...

    async def create_ephemeral_key(self, customer_id: str) -> str:
        ...

    async def create_setup_intent(self, customer_id: str) -> str:
        ...

    async def create_subscription(
        self,
        customer_id: str,
        *,
        price_id: str,
        trial_days: int,
        coupon_id: str | None = None,
    ) -> ExternalSubscription:
        ...

    async def cancel_subscription(self, subscription_id: str) -> ExternalSubscription:
        ...

    async def create_meter_event(self, *, event_name: str, customer_id: str, value: int) -> str | None:
        ...
