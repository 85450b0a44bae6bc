from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession

from exto.domain.models import MeterEvent


async def create(
    session: AsyncSession,
    *,
    org_id: str,
    event_name: str,
    event_value: int,
    stripe_customer_id: str,
    identifier: str | None,
    created_by: str | None,
) -> MeterEvent:
    event = MeterEvent(
        org_id=org_id,
        event_name=event_name,
        event_value=event_value,
        stripe_customer_id=stripe_customer_id,
        identifier=identifier,
        created_by=created_by,
        updated_by=created_by,
    )
    session.add(event)
    await session.flush()
    return event
