from __future__ import annotations

from typing import Any
from uuid import uuid4

from exto.core.errors import PaymentProviderError
from exto.domain.schema import Billing
from exto.providers.payments.base import ExternalSubscription


class FakePaymentGateway:
    """In-memory gateway that records every call for assertions."""

    def __init__(self, *, fail_meter_events: bool = False) -> None:
        self.fail_meter_events = fail_meter_events
        self.customers: dict[str, dict[str, Any]] = {}
        self.subscriptions: dict[str, ExternalSubscription] = {}
        self.meter_events: list[dict[str, Any]] = []

    async def create_customer(self, *, org_id: str, org_name: str, billing: Billing) -> str:
        customer_id = f"cus_{uuid4().hex[:14]}"
        self.customers[customer_id] = {"org_id": org_id, "name": org_name, "billing": billing.model_dump()}
        return customer_id

    async def create_ephemeral_key(self, customer_id: str) -> str:
        return f"ek_test_{customer_id}"

    async def create_setup_intent(self, customer_id: str) -> str:
        return f"seti_{uuid4().hex[:14]}_secret_{customer_id}"

    async def create_subscription(
        self,
        customer_id: str,
        *,
        price_id: str,
        trial_days: int,
        coupon_id: str | None = None,
    ) -> ExternalSubscription:
        if customer_id not in self.customers:
            raise PaymentProviderError("Unknown customer")
        subscription = ExternalSubscription(
            id=f"sub_{uuid4().hex[:14]}",
            status="trialing" if trial_days > 0 else "active",
        )
        self.subscriptions[subscription.id] = subscription
        return subscription

    async def cancel_subscription(self, subscription_id: str) -> ExternalSubscription:
        if subscription_id not in self.subscriptions:
            raise PaymentProviderError("Unknown subscription")
        canceled = ExternalSubscription(id=subscription_id, status="canceled")
        self.subscriptions[subscription_id] = canceled
        return canceled

    async def create_meter_event(self, *, event_name: str, customer_id: str, value: int) -> str | None:
        if self.fail_meter_events:
            raise PaymentProviderError("Meter event rejected")
        identifier = f"mev_{uuid4().hex[:14]}"
        self.meter_events.append(
            {"identifier": identifier, "event_name": event_name, "customer_id": customer_id, "value": value}
        )
        return identifier
