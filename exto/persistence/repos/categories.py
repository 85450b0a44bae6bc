from __future__ import annotations

from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from exto.domain.models import Category, utc_now


async def get_by_id(session: AsyncSession, category_id: str) -> Category | None:
    result = await session.execute(select(Category).where(Category.id == category_id))
    return result.scalar_one_or_none()


async def get_by_name(session: AsyncSession, name: str) -> Category | None:
    result = await session.execute(
        select(Category).where(Category.name == name).order_by(Category.created_at).limit(1)
    )
    return result.scalar_one_or_none()


async def get_by_slug(session: AsyncSession, slug: str) -> Category | None:
    result = await session.execute(select(Category).where(Category.slug == slug))
    return result.scalar_one_or_none()


async def list_page(session: AsyncSession, *, offset: int, limit: int) -> list[Category]:
    # Newest first; id breaks ties so pages never overlap.
    result = await session.execute(
        select(Category)
        .order_by(Category.created_at.desc(), Category.id.desc())
        .offset(offset)
        .limit(limit)
    )
    return list(result.scalars().all())


async def count_all(session: AsyncSession) -> int:
    result = await session.execute(select(func.count()).select_from(Category))
    return int(result.scalar_one())


async def create(
    session: AsyncSession,
    *,
    name: str,
    slug: str,
    fields: list[dict[str, Any]],
    primary_field: str | None = None,
    summary: str | None = None,
    created_by: str | None = None,
) -> Category:
    category = Category(
        name=name,
        slug=slug,
        version=1,
        fields=fields,
        primary_field=primary_field,
        summary=summary,
        is_active=True,
        created_by=created_by,
        updated_by=created_by,
    )
    session.add(category)
    await session.flush()
    return category


async def replace_fields(
    session: AsyncSession,
    category: Category,
    fields: list[dict[str, Any]],
    *,
    updated_by: str | None = None,
) -> Category:
    # Schema changes bump the version so stale readers can be detected.
    category.fields = fields
    category.version = (category.version or 0) + 1
    category.updated_at = utc_now()
    category.updated_by = updated_by
    await session.flush()
    return category
