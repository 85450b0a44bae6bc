from __future__ import annotations

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from exto.domain.models import Identity, utc_now


async def get_by_email(session: AsyncSession, email: str) -> Identity | None:
    result = await session.execute(select(Identity).where(Identity.email == email))
    return result.scalar_one_or_none()


async def exists(session: AsyncSession, email: str) -> bool:
    result = await session.execute(select(Identity.id).where(Identity.email == email).limit(1))
    return result.scalar_one_or_none() is not None


async def create(
    session: AsyncSession,
    *,
    email: str,
    first_name: str,
    last_name: str,
    current_org_id: str | None = None,
) -> Identity:
    identity = Identity(
        email=email,
        first_name=first_name,
        last_name=last_name,
        is_active=True,
        current_org_id=current_org_id,
    )
    session.add(identity)
    await session.flush()
    # Identities are self-created; stamp the audit envelope with their own id.
    identity.created_by = identity.id
    identity.updated_by = identity.id
    return identity


async def set_current_org(session: AsyncSession, identity_id: str, org_id: str) -> None:
    await session.execute(
        update(Identity)
        .where(Identity.id == identity_id)
        .values(current_org_id=org_id, updated_at=utc_now(), updated_by=identity_id)
    )


async def delete_by_id(session: AsyncSession, identity_id: str) -> None:
    await session.execute(delete(Identity).where(Identity.id == identity_id))
