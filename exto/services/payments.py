from __future__ import annotations

from dataclasses import dataclass
import logging

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from exto.core.config import get_settings
from exto.core.errors import InvalidInputError, OrganizationNotFoundError, SubscriptionNotFoundError
from exto.domain.models import Subscription, utc_now
from exto.domain.schema import Billing, BillingCycle, SubscriptionStatus
from exto.persistence.db import SessionLocal, with_timeout
from exto.persistence.repos import organizations as organizations_repo
from exto.persistence.repos import subscriptions as subscriptions_repo
from exto.providers.payments.base import PaymentGateway
from exto.providers.payments.factory import get_payment_gateway


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SetupIntentResult:
    customer_id: str
    ephemeral_key: str
    client_secret: str


class PaymentService:
    def __init__(
        self,
        *,
        gateway: PaymentGateway | None = None,
        session_factory: async_sessionmaker[AsyncSession] = SessionLocal,
    ) -> None:
        self._gateway = gateway
        self._session_factory = session_factory
        self._settings = get_settings()

    @property
    def gateway(self) -> PaymentGateway:
        if self._gateway is None:
            self._gateway = get_payment_gateway()
        return self._gateway

    async def create_setup_intent(self, org_id: str, billing: Billing, *, updated_by: str | None) -> SetupIntentResult:
        async with self._session_factory() as session:
            organization = await with_timeout(organizations_repo.get_by_id(session, org_id))
        if organization is None:
            raise OrganizationNotFoundError(f"Organization {org_id} not found")

        customer_id = organization.stripe_customer_id
        created_customer = None
        if not customer_id:
            customer_id = await self.gateway.create_customer(
                org_id=organization.id, org_name=organization.name, billing=billing
            )
            created_customer = customer_id
        # Billing details are refreshed on every setup; the customer id only when new.
        async with self._session_factory() as session:
            async with session.begin():
                await with_timeout(
                    organizations_repo.set_billing(
                        session,
                        org_id,
                        billing=billing.model_dump(),
                        stripe_customer_id=created_customer,
                        updated_by=updated_by,
                    )
                )
        client_secret = await self.gateway.create_setup_intent(customer_id)
        ephemeral_key = await self.gateway.create_ephemeral_key(customer_id)
        logger.info("setup intent created org_id=%s new_customer=%s", org_id, created_customer is not None)
        return SetupIntentResult(customer_id=customer_id, ephemeral_key=ephemeral_key, client_secret=client_secret)

    async def create_subscription(self, org_id: str, *, created_by: str | None) -> Subscription:
        async with self._session_factory() as session:
            organization = await with_timeout(organizations_repo.get_by_id(session, org_id))
        if organization is None:
            raise OrganizationNotFoundError(f"Organization {org_id} not found")
        if not organization.stripe_customer_id:
            raise InvalidInputError("Payment customer is missing; complete payment setup first")

        trial_days = self._settings.subscription_trial_days
        external = await self.gateway.create_subscription(
            organization.stripe_customer_id,
            price_id=self._settings.stripe_price_id,
            trial_days=trial_days,
            coupon_id=self._settings.stripe_coupon_id,
        )
        async with self._session_factory() as session:
            async with session.begin():
                # Exactly one current subscription per organization.
                await with_timeout(subscriptions_repo.clear_current(session, org_id, updated_by=created_by))
                subscription = await with_timeout(
                    subscriptions_repo.create(
                        session,
                        org_id=org_id,
                        stripe_sub_id=external.id,
                        started_at=utc_now(),
                        trial_period_days=trial_days,
                        billing_cycle=BillingCycle.monthly.value,
                        status=external.status or SubscriptionStatus.trialing.value,
                        created_by=created_by,
                    )
                )
        logger.info("subscription created org_id=%s subscription_id=%s", org_id, subscription.id)
        return subscription

    async def cancel_subscription(self, org_id: str, *, updated_by: str | None) -> Subscription:
        async with self._session_factory() as session:
            subscription = await with_timeout(subscriptions_repo.get_current(session, org_id))
            if subscription is None:
                raise SubscriptionNotFoundError(f"No current subscription for organization {org_id}")
            await self.gateway.cancel_subscription(subscription.stripe_sub_id)
            await with_timeout(
                subscriptions_repo.mark_canceled(
                    session, subscription, ended_at=utc_now(), updated_by=updated_by
                )
            )
            await session.commit()
        logger.info("subscription canceled org_id=%s subscription_id=%s", org_id, subscription.id)
        return subscription

    async def get_my_subscription(self, org_id: str) -> Subscription:
        async with self._session_factory() as session:
            subscription = await with_timeout(subscriptions_repo.get_current(session, org_id))
        if subscription is None:
            raise SubscriptionNotFoundError(f"No current subscription for organization {org_id}")
        return subscription
