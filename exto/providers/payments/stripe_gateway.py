from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable, TypeVar

import stripe

from exto.core.config import get_settings
from exto.core.errors import PaymentProviderError, ProviderConfigError
from exto.domain.schema import Billing
from exto.providers.payments.base import ExternalSubscription
from exto.services.telemetry import record_external_call


logger = logging.getLogger(__name__)

T = TypeVar("T")


class StripePaymentGateway:
    def __init__(self, api_key: str | None = None) -> None:
        settings = get_settings()
        self._api_key = api_key or settings.stripe_secret_key
        if not self._api_key:
            raise ProviderConfigError("STRIPE_SECRET_KEY is required for the Stripe gateway")
        self._api_version = settings.stripe_api_version or getattr(stripe, "api_version", None)

    async def _call(self, operation: str, fn: Callable[[], T]) -> T:
        # The Stripe SDK is blocking; keep it off the event loop.
        start = time.monotonic()
        try:
            result = await asyncio.to_thread(fn)
        except stripe.StripeError as exc:
            record_external_call(
                integration="payments.stripe",
                latency_ms=(time.monotonic() - start) * 1000.0,
                success=False,
            )
            logger.warning("stripe %s failed: %s", operation, exc)
            raise PaymentProviderError(f"Payment provider {operation} failed") from exc
        record_external_call(
            integration="payments.stripe",
            latency_ms=(time.monotonic() - start) * 1000.0,
            success=True,
        )
        return result

    async def create_customer(self, *, org_id: str, org_name: str, billing: Billing) -> str:
        params: dict[str, Any] = {
            "name": billing.full_name or org_name,
            "email": billing.email or None,
            "phone": billing.phone or None,
            "address": {
                "line1": billing.street_address,
                "city": billing.city,
                "state": billing.state,
                "postal_code": billing.zip_code,
                "country": billing.country,
            },
            "metadata": {"org_id": org_id, "org_name": org_name},
        }
        customer = await self._call(
            "create_customer",
            lambda: stripe.Customer.create(api_key=self._api_key, **params),
        )
        return customer["id"]

    async def create_ephemeral_key(self, customer_id: str) -> str:
        key = await self._call(
            "create_ephemeral_key",
            lambda: stripe.EphemeralKey.create(
                api_key=self._api_key,
                customer=customer_id,
                stripe_version=self._api_version,
            ),
        )
        return key["secret"]

    async def create_setup_intent(self, customer_id: str) -> str:
        intent = await self._call(
            "create_setup_intent",
            lambda: stripe.SetupIntent.create(
                api_key=self._api_key,
                customer=customer_id,
                usage="off_session",
                payment_method_types=["card"],
            ),
        )
        return intent["client_secret"]

    async def create_subscription(
        self,
        customer_id: str,
        *,
        price_id: str,
        trial_days: int,
        coupon_id: str | None = None,
    ) -> ExternalSubscription:
        params: dict[str, Any] = {
            "customer": customer_id,
            "items": [{"price": price_id}],
            "off_session": True,
            "trial_period_days": trial_days,
            "proration_behavior": "none",
            "payment_behavior": "error_if_incomplete",
        }
        if coupon_id:
            params["discounts"] = [{"coupon": coupon_id}]
        subscription = await self._call(
            "create_subscription",
            lambda: stripe.Subscription.create(api_key=self._api_key, **params),
        )
        return ExternalSubscription(id=subscription["id"], status=subscription["status"])

    async def cancel_subscription(self, subscription_id: str) -> ExternalSubscription:
        subscription = await self._call(
            "cancel_subscription",
            lambda: stripe.Subscription.cancel(subscription_id, api_key=self._api_key),
        )
        return ExternalSubscription(id=subscription["id"], status=subscription["status"])

    async def create_meter_event(self, *, event_name: str, customer_id: str, value: int) -> str | None:
        event = await self._call(
            "create_meter_event",
            lambda: stripe.billing.MeterEvent.create(
                api_key=self._api_key,
                event_name=event_name,
                payload={"value": str(value), "stripe_customer_id": customer_id},
            ),
        )
        return event.get("identifier")
