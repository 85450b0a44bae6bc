from __future__ import annotations

import os
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from exto.core.errors import NotFoundError, ScanHistoryNotFoundError
from exto.persistence.db import SessionLocal, with_timeout
from exto.persistence.pagination import PageRequest, fetch_page
from exto.persistence.repos import scan_history as scan_history_repo
from exto.persistence.tenancy import open_namespace, org_namespace, scan_history_table
from exto.services.category_data import CategoryDataService, TenantScope


class ScanHistoryService:
    def __init__(
        self,
        *,
        category_data: CategoryDataService,
        session_factory: async_sessionmaker[AsyncSession] = SessionLocal,
    ) -> None:
        self._category_data = category_data
        self._session_factory = session_factory

    async def list_page(self, scope: TenantScope, page: PageRequest) -> tuple[list[dict[str, Any]], int]:
        namespace = org_namespace(scope.org_slug)
        table = scan_history_table(namespace)

        async def _prepare(session: AsyncSession) -> None:
            await open_namespace(session, namespace, table)

        return await fetch_page(
            self._session_factory,
            page,
            fetch=lambda session, offset, limit: scan_history_repo.list_page(
                session, namespace, offset=offset, limit=limit
            ),
            count=lambda session: scan_history_repo.count_all(session, namespace),
            prepare=_prepare,
        )

    async def get(self, scope: TenantScope, scan_history_id: str) -> dict[str, Any]:
        namespace = org_namespace(scope.org_slug)
        async with self._session_factory() as session:
            await open_namespace(session, namespace, scan_history_table(namespace))
            entry = await with_timeout(scan_history_repo.get_by_id(session, namespace, scan_history_id))
        if entry is None:
            raise ScanHistoryNotFoundError(f"Scan history {scan_history_id} not found")
        return entry

    async def get_data(self, scope: TenantScope, scan_history_id: str) -> dict[str, Any]:
        entry = await self.get(scope, scan_history_id)
        return await self._category_data.get_by_collection(
            scope, entry["category_data_col"], entry["category_data_id"]
        )

    async def document_path(self, scope: TenantScope, scan_history_id: str) -> str:
        record = await self.get_data(scope, scan_history_id)
        paths = record.get("document_paths") or []
        # Only the first stored document is served.
        if not paths or not os.path.isfile(paths[0]):
            raise NotFoundError(f"No stored document for scan history {scan_history_id}")
        return paths[0]
