from __future__ import annotations

import logging
import random
from typing import Any, Callable

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from exto.core.errors import BatchNotFoundError
from exto.domain.models import utc_now
from exto.domain.schema import BatchStatus
from exto.persistence.db import SessionLocal, with_timeout
from exto.persistence.repos import batches as batches_repo
from exto.persistence.tenancy import batch_table, open_namespace, org_namespace


logger = logging.getLogger(__name__)


def _batch_name(rng: Callable[[int, int], int]) -> str:
    return f"Batch-{rng(0, 999999):06d}"


class BatchService:
    def __init__(
        self,
        *,
        session_factory: async_sessionmaker[AsyncSession] = SessionLocal,
        rng: Callable[[int, int], int] | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._rng = rng or random.randint

    async def create(self, org_slug: str, *, created_by: str | None) -> dict[str, Any]:
        namespace = org_namespace(org_slug)
        async with self._session_factory() as session:
            await open_namespace(session, namespace, batch_table(namespace))
            batch = await with_timeout(
                batches_repo.create(
                    session,
                    namespace,
                    name=_batch_name(self._rng),
                    status=BatchStatus.open.value,
                    created_by=created_by,
                )
            )
            await session.commit()
        logger.info("batch created batch_id=%s namespace=%s", batch["id"], namespace)
        return batch

    async def get(self, org_slug: str, batch_id: str) -> dict[str, Any]:
        namespace = org_namespace(org_slug)
        async with self._session_factory() as session:
            await open_namespace(session, namespace, batch_table(namespace))
            batch = await with_timeout(batches_repo.get_by_id(session, namespace, batch_id))
        if batch is None:
            raise BatchNotFoundError(f"Batch {batch_id} not found")
        return batch

    async def close(self, org_slug: str, batch_id: str, *, updated_by: str | None) -> dict[str, Any]:
        # Closed is terminal; closing again leaves the record untouched.
        namespace = org_namespace(org_slug)
        async with self._session_factory() as session:
            await open_namespace(session, namespace, batch_table(namespace))
            batch = await with_timeout(batches_repo.get_by_id(session, namespace, batch_id))
            if batch is None:
                raise BatchNotFoundError(f"Batch {batch_id} not found")
            if batch["status"] == BatchStatus.closed.value:
                return batch
            await with_timeout(
                batches_repo.set_status(
                    session, namespace, batch_id, status=BatchStatus.closed.value, updated_by=updated_by
                )
            )
            await session.commit()
        # The session's connection is released on commit, so reply from the known values.
        return {**batch, "status": BatchStatus.closed.value, "updated_at": utc_now(), "updated_by": updated_by}
