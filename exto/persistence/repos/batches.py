from __future__ import annotations

from typing import Any

from sqlalchemy import insert, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from exto.domain.models import new_id, utc_now
from exto.persistence.tenancy import batch_table, row_dict


async def create(session: AsyncSession, namespace: str, *, name: str, status: str, created_by: str | None) -> dict[str, Any]:
    table = batch_table(namespace)
    now = utc_now()
    values = {
        "id": new_id(),
        "name": name,
        "status": status,
        "created_at": now,
        "created_by": created_by,
        "updated_at": now,
        "updated_by": created_by,
    }
    await session.execute(insert(table).values(**values))
    return {**values, "deleted_at": None, "deleted_by": None}


async def get_by_id(session: AsyncSession, namespace: str, batch_id: str) -> dict[str, Any] | None:
    table = batch_table(namespace)
    result = await session.execute(select(table).where(table.c.id == batch_id))
    row = result.first()
    return row_dict(row) if row is not None else None


async def set_status(
    session: AsyncSession,
    namespace: str,
    batch_id: str,
    *,
    status: str,
    updated_by: str | None,
) -> bool:
    table = batch_table(namespace)
    result = await session.execute(
        update(table)
        .where(table.c.id == batch_id)
        .values(status=status, updated_at=utc_now(), updated_by=updated_by)
    )
    return bool(result.rowcount)
