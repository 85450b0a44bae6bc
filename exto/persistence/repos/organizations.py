from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from exto.domain.models import Organization, utc_now


async def get_by_id(session: AsyncSession, org_id: str) -> Organization | None:
    result = await session.execute(select(Organization).where(Organization.id == org_id))
    return result.scalar_one_or_none()


async def get_active_by_id(session: AsyncSession, org_id: str) -> Organization | None:
    # Soft-deactivated organizations never resolve a request context.
    result = await session.execute(
        select(Organization).where(Organization.id == org_id, Organization.is_active.is_(True))
    )
    return result.scalar_one_or_none()


async def exists_by_name(session: AsyncSession, name: str) -> bool:
    result = await session.execute(select(Organization.id).where(Organization.name == name).limit(1))
    return result.scalar_one_or_none() is not None


async def exists_by_slug(session: AsyncSession, slug: str) -> bool:
    result = await session.execute(select(Organization.id).where(Organization.slug == slug).limit(1))
    return result.scalar_one_or_none() is not None


async def count_all(session: AsyncSession) -> int:
    result = await session.execute(select(func.count()).select_from(Organization))
    return int(result.scalar_one())


async def create(
    session: AsyncSession,
    *,
    name: str,
    slug: str,
    owner_id: str,
    org_id: str | None = None,
) -> Organization:
    organization = Organization(
        name=name,
        slug=slug,
        owner_id=owner_id,
        is_active=True,
        scan_counter=0,
        created_by=owner_id,
        updated_by=owner_id,
    )
    if org_id is not None:
        organization.id = org_id
    session.add(organization)
    await session.flush()
    return organization


async def increment_scan_counter(session: AsyncSession, org_id: str) -> int | None:
    # Single UPDATE ... RETURNING so concurrent scans never observe the same value.
    result = await session.execute(
        update(Organization)
        .where(Organization.id == org_id)
        .values(scan_counter=Organization.scan_counter + 1)
        .returning(Organization.scan_counter)
    )
    value = result.scalar_one_or_none()
    return int(value) if value is not None else None


async def touch_last_active(session: AsyncSession, org_id: str, at: datetime) -> bool:
    result = await session.execute(
        update(Organization).where(Organization.id == org_id).values(last_active_at=at)
    )
    return bool(result.rowcount)


async def set_billing(
    session: AsyncSession,
    org_id: str,
    *,
    billing: dict[str, Any],
    stripe_customer_id: str | None,
    updated_by: str | None,
) -> None:
    values: dict[str, Any] = {"billing": billing, "updated_at": utc_now(), "updated_by": updated_by}
    if stripe_customer_id is not None:
        values["stripe_customer_id"] = stripe_customer_id
    await session.execute(update(Organization).where(Organization.id == org_id).values(**values))


async def list_owned_by(session: AsyncSession, owner_id: str) -> list[Organization]:
    result = await session.execute(
        select(Organization).where(Organization.owner_id == owner_id).order_by(Organization.created_at)
    )
    return list(result.scalars().all())


async def delete_by_ids(session: AsyncSession, org_ids: list[str]) -> None:
    if not org_ids:
        return
    await session.execute(delete(Organization).where(Organization.id.in_(org_ids)))
