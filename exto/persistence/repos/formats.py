from __future__ import annotations

from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from exto.domain.models import Format


async def list_by_category(session: AsyncSession, category_id: str, *, active_only: bool = True) -> list[Format]:
    stmt = select(Format).where(Format.category_id == category_id)
    if active_only:
        stmt = stmt.where(Format.is_active.is_(True))
    result = await session.execute(stmt.order_by(Format.format_number, Format.created_at))
    return list(result.scalars().all())


async def count_by_category(session: AsyncSession, category_id: str) -> int:
    result = await session.execute(
        select(func.count()).select_from(Format).where(Format.category_id == category_id)
    )
    return int(result.scalar_one())


async def create(
    session: AsyncSession,
    *,
    category_id: str,
    name: str,
    format_number: int,
    extraction_fields: list[dict[str, Any]],
    extracted_sample: dict[str, Any] | None = None,
    created_by: str | None = None,
) -> Format:
    fmt = Format(
        category_id=category_id,
        name=name,
        format_number=format_number,
        is_active=True,
        extraction_fields=extraction_fields,
        documents=[],
        extracted_sample=extracted_sample,
        created_by=created_by,
        updated_by=created_by,
    )
    session.add(fmt)
    await session.flush()
    return fmt
