from __future__ import annotations

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from exto.domain.models import User


async def get_active_member(session: AsyncSession, *, identity_id: str, org_id: str) -> User | None:
    result = await session.execute(
        select(User).where(
            User.identity_id == identity_id,
            User.organization_id == org_id,
            User.is_active.is_(True),
        )
    )
    return result.scalar_one_or_none()


async def exists(session: AsyncSession, *, org_id: str, email: str) -> bool:
    result = await session.execute(
        select(User.id).where(User.organization_id == org_id, User.email == email).limit(1)
    )
    return result.scalar_one_or_none() is not None


async def create(
    session: AsyncSession,
    *,
    identity_id: str,
    org_id: str,
    email: str,
    first_name: str,
    last_name: str,
    role: str,
    created_by: str,
) -> User:
    user = User(
        identity_id=identity_id,
        organization_id=org_id,
        email=email,
        first_name=first_name,
        last_name=last_name,
        role=role,
        is_active=True,
        created_by=created_by,
        updated_by=created_by,
    )
    session.add(user)
    await session.flush()
    return user


async def list_by_org(session: AsyncSession, org_id: str, *, offset: int, limit: int) -> list[User]:
    result = await session.execute(
        select(User)
        .where(User.organization_id == org_id)
        .order_by(User.created_at.desc(), User.id)
        .offset(offset)
        .limit(limit)
    )
    return list(result.scalars().all())


async def count_by_org(session: AsyncSession, org_id: str) -> int:
    result = await session.execute(
        select(func.count()).select_from(User).where(User.organization_id == org_id)
    )
    return int(result.scalar_one())


async def delete_by_org_ids(session: AsyncSession, org_ids: list[str]) -> None:
    if not org_ids:
        return
    await session.execute(delete(User).where(User.organization_id.in_(org_ids)))


async def delete_by_identity(session: AsyncSession, identity_id: str) -> None:
    await session.execute(delete(User).where(User.identity_id == identity_id))
