from __future__ import annotations

import asyncio
import logging

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from exto.core.errors import PaymentProviderError
from exto.domain.models import MeterEvent
from exto.persistence.db import SessionLocal, with_timeout
from exto.persistence.repos import meter_events as meter_events_repo
from exto.persistence.repos import organizations as organizations_repo
from exto.providers.payments.base import PaymentGateway
from exto.providers.payments.factory import get_payment_gateway
from exto.services.telemetry import increment_counter


logger = logging.getLogger(__name__)


class MeterService:
    def __init__(
        self,
        *,
        gateway: PaymentGateway | None = None,
        session_factory: async_sessionmaker[AsyncSession] = SessionLocal,
    ) -> None:
        self._gateway = gateway
        self._session_factory = session_factory
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def gateway(self) -> PaymentGateway:
        if self._gateway is None:
            self._gateway = get_payment_gateway()
        return self._gateway

    async def increment(
        self, org_id: str, event_name: str, value: int, *, created_by: str | None = None
    ) -> MeterEvent | None:
        """Report usage for organizations with a payment customer; others are skipped."""
        async with self._session_factory() as session:
            organization = await with_timeout(organizations_repo.get_by_id(session, org_id))
        if organization is None or not organization.stripe_customer_id:
            return None
        identifier = await self.gateway.create_meter_event(
            event_name=event_name,
            customer_id=organization.stripe_customer_id,
            value=value,
        )
        if not identifier:
            raise PaymentProviderError("Payment provider returned no meter event identifier")
        async with self._session_factory() as session:
            async with session.begin():
                event = await with_timeout(
                    meter_events_repo.create(
                        session,
                        org_id=org_id,
                        event_name=event_name,
                        event_value=value,
                        stripe_customer_id=organization.stripe_customer_id,
                        identifier=identifier,
                        created_by=created_by,
                    )
                )
        return event

    async def _increment_logged(self, org_id: str, event_name: str, value: int, created_by: str | None) -> None:
        try:
            await self.increment(org_id, event_name, value, created_by=created_by)
        except Exception:
            # Usage reporting never fails the request that triggered it.
            increment_counter("metering.failures")
            logger.exception("meter event failed org_id=%s event=%s", org_id, event_name)

    def schedule(self, org_id: str, event_name: str, value: int = 1, *, created_by: str | None = None) -> asyncio.Task[None]:
        task = asyncio.create_task(self._increment_logged(org_id, event_name, value, created_by))
        # Hold a reference until completion so the task is not garbage collected.
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self) -> None:
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
