from __future__ import annotations

from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from exto.domain.models import Subscription, utc_now


async def get_current(session: AsyncSession, org_id: str) -> Subscription | None:
    result = await session.execute(
        select(Subscription)
        .where(Subscription.organization_id == org_id, Subscription.is_current.is_(True))
        .order_by(Subscription.created_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def clear_current(session: AsyncSession, org_id: str, *, updated_by: str | None) -> None:
    # Only one subscription per organization is current at a time.
    await session.execute(
        update(Subscription)
        .where(Subscription.organization_id == org_id, Subscription.is_current.is_(True))
        .values(is_current=False, updated_at=utc_now(), updated_by=updated_by)
    )


async def create(
    session: AsyncSession,
    *,
    org_id: str,
    stripe_sub_id: str,
    started_at: datetime,
    trial_period_days: int,
    billing_cycle: str,
    status: str,
    created_by: str | None,
) -> Subscription:
    subscription = Subscription(
        organization_id=org_id,
        stripe_sub_id=stripe_sub_id,
        started_at=started_at,
        trial_period_days=trial_period_days,
        billing_cycle=billing_cycle,
        status=status,
        is_current=True,
        created_by=created_by,
        updated_by=created_by,
    )
    session.add(subscription)
    await session.flush()
    return subscription


async def mark_canceled(
    session: AsyncSession,
    subscription: Subscription,
    *,
    ended_at: datetime,
    updated_by: str | None,
) -> Subscription:
    subscription.status = "canceled"
    subscription.ended_at = ended_at
    subscription.is_current = False
    subscription.updated_at = utc_now()
    subscription.updated_by = updated_by
    await session.flush()
    return subscription
