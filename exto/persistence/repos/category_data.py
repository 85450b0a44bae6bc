from __future__ import annotations

from typing import Any

from sqlalchemy import func, insert, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from exto.domain.models import new_id, utc_now
from exto.persistence.tenancy import category_data_table, row_dict


async def insert_record(
    session: AsyncSession,
    namespace: str,
    category_slug: str,
    *,
    category_id: str,
    format_id: str | None,
    org_id: str,
    metadata: dict[str, Any],
    raw_data: dict[str, Any],
    document_paths: list[str],
    created_by: str | None,
) -> dict[str, Any]:
    table = category_data_table(namespace, category_slug)
    now = utc_now()
    values = {
        "id": new_id(),
        "category_id": category_id,
        "format_id": format_id,
        "org_id": org_id,
        "metadata": metadata,
        "raw_data": raw_data,
        "document_paths": document_paths,
        "created_at": now,
        "created_by": created_by,
        "updated_at": now,
        "updated_by": created_by,
    }
    await session.execute(insert(table).values(**values))
    return {**values, "deleted_at": None, "deleted_by": None}


async def get_by_id(
    session: AsyncSession, namespace: str, category_slug: str, data_id: str
) -> dict[str, Any] | None:
    table = category_data_table(namespace, category_slug)
    result = await session.execute(select(table).where(table.c.id == data_id))
    row = result.first()
    return row_dict(row) if row is not None else None


async def replace_metadata(
    session: AsyncSession,
    namespace: str,
    category_slug: str,
    data_id: str,
    *,
    metadata: dict[str, Any],
    updated_by: str | None,
) -> bool:
    table = category_data_table(namespace, category_slug)
    result = await session.execute(
        update(table)
        .where(table.c.id == data_id)
        .values(metadata=metadata, updated_at=utc_now(), updated_by=updated_by)
    )
    return bool(result.rowcount)


async def list_page(
    session: AsyncSession, namespace: str, category_slug: str, *, offset: int, limit: int
) -> list[dict[str, Any]]:
    table = category_data_table(namespace, category_slug)
    result = await session.execute(
        select(table).order_by(table.c.created_at.desc(), table.c.id.desc()).offset(offset).limit(limit)
    )
    return [row_dict(row) for row in result.all()]


async def count_all(session: AsyncSession, namespace: str, category_slug: str) -> int:
    table = category_data_table(namespace, category_slug)
    result = await session.execute(select(func.count()).select_from(table))
    return int(result.scalar_one())
