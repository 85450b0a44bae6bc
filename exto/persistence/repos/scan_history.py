from __future__ import annotations

from typing import Any

from sqlalchemy import func, insert, select
from sqlalchemy.ext.asyncio import AsyncSession

from exto.domain.models import new_id, utc_now
from exto.persistence.tenancy import row_dict, scan_history_table


async def insert_entry(
    session: AsyncSession,
    namespace: str,
    *,
    category_id: str,
    format_id: str | None,
    scan_code: str,
    category_data_col: str,
    category_data_id: str,
    batch_id: str | None,
    thumbnails: list[str],
    created_by: str | None,
) -> dict[str, Any]:
    # Entries are immutable once written; there is no update path.
    table = scan_history_table(namespace)
    now = utc_now()
    values = {
        "id": new_id(),
        "category_id": category_id,
        "format_id": format_id,
        "scan_code": scan_code,
        "category_data_col": category_data_col,
        "category_data_id": category_data_id,
        "batch_id": batch_id,
        "thumbnails": thumbnails,
        "created_at": now,
        "created_by": created_by,
        "updated_at": now,
        "updated_by": created_by,
    }
    await session.execute(insert(table).values(**values))
    return {**values, "deleted_at": None, "deleted_by": None}


async def get_by_id(session: AsyncSession, namespace: str, scan_history_id: str) -> dict[str, Any] | None:
    table = scan_history_table(namespace)
    result = await session.execute(select(table).where(table.c.id == scan_history_id))
    row = result.first()
    return row_dict(row) if row is not None else None


async def list_page(session: AsyncSession, namespace: str, *, offset: int, limit: int) -> list[dict[str, Any]]:
    table = scan_history_table(namespace)
    result = await session.execute(
        select(table).order_by(table.c.created_at.desc(), table.c.id.desc()).offset(offset).limit(limit)
    )
    return [row_dict(row) for row in result.all()]


async def count_all(session: AsyncSession, namespace: str) -> int:
    table = scan_history_table(namespace)
    result = await session.execute(select(func.count()).select_from(table))
    return int(result.scalar_one())
