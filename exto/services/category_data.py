from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from exto.core.errors import CategoryDataNotFoundError
from exto.domain.models import Category, utc_now
from exto.domain.schema import ValueMap
from exto.persistence.db import SessionLocal, with_timeout
from exto.persistence.pagination import PageRequest, fetch_page
from exto.persistence.repos import category_data as category_data_repo
from exto.persistence.repos import scan_history as scan_history_repo
from exto.persistence.tenancy import (
    DATA_TABLE_SUFFIX,
    category_data_collection,
    category_data_table,
    open_namespace,
    org_namespace,
    scan_history_table,
)
from exto.services.categories import CategoryRegistry
from exto.services.images import thumbnail_data_url
from exto.services.organizations import OrganizationService


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TenantScope:
    # Resolved organization for tenant-scoped writes.
    org_id: str
    org_slug: str
    user_id: str | None = None


@dataclass(frozen=True)
class CreatedRecord:
    category_data: dict[str, Any]
    scan_history: dict[str, Any]


def primary_scan_code(category: Category, metadata: ValueMap) -> str | None:
    # Any non-empty string value of the primary field is the scan code, as written.
    if not category.primary_field:
        return None
    value = metadata.get(category.primary_field)
    if isinstance(value, str) and value:
        return value
    return None


def _read_file(path: str) -> bytes:
    with open(path, "rb") as handle:
        return handle.read()


class CategoryDataService:
    def __init__(
        self,
        *,
        categories: CategoryRegistry,
        organizations: OrganizationService,
        session_factory: async_sessionmaker[AsyncSession] = SessionLocal,
    ) -> None:
        self._categories = categories
        self._organizations = organizations
        self._session_factory = session_factory

    async def resolve_scan_code(self, scope: TenantScope, category: Category, metadata: ValueMap) -> str:
        code = primary_scan_code(category, metadata)
        if code is not None:
            return code
        return await self._organizations.generate_next_scan_code(scope.org_id)

    async def create(
        self,
        scope: TenantScope,
        category_id: str,
        *,
        metadata: ValueMap,
        raw_data: dict[str, Any],
        file_path: str,
        batch_id: str | None,
        format_id: str | None = None,
    ) -> CreatedRecord:
        """Store one extracted record and its scan history entry.

        Both rows are written in a single transaction in the tenant namespace.
        """
        category = await self._categories.get_by_id(category_id)
        thumbnail = thumbnail_data_url(await asyncio.to_thread(_read_file, file_path))
        scan_code = await self.resolve_scan_code(scope, category, metadata)

        namespace = org_namespace(scope.org_slug)
        data_table = category_data_table(namespace, category.slug)
        async with self._session_factory() as session:
            await open_namespace(session, namespace, data_table, scan_history_table(namespace))
            record = await with_timeout(
                category_data_repo.insert_record(
                    session,
                    namespace,
                    category.slug,
                    category_id=category.id,
                    format_id=format_id,
                    org_id=scope.org_id,
                    metadata=metadata,
                    raw_data=raw_data,
                    document_paths=[file_path],
                    created_by=scope.user_id,
                )
            )
            history = await with_timeout(
                scan_history_repo.insert_entry(
                    session,
                    namespace,
                    category_id=category.id,
                    format_id=format_id,
                    scan_code=scan_code,
                    category_data_col=category_data_collection(category.slug),
                    category_data_id=record["id"],
                    batch_id=batch_id,
                    thumbnails=[thumbnail],
                    created_by=scope.user_id,
                )
            )
            await session.commit()
        logger.info(
            "category data stored category_id=%s data_id=%s scan_history_id=%s scan_code=%s",
            category.id,
            record["id"],
            history["id"],
            scan_code,
        )
        return CreatedRecord(category_data=record, scan_history=history)

    async def get(self, scope: TenantScope, category_id: str, data_id: str) -> dict[str, Any]:
        category = await self._categories.get_by_id(category_id)
        namespace = org_namespace(scope.org_slug)
        async with self._session_factory() as session:
            await open_namespace(session, namespace, category_data_table(namespace, category.slug))
            record = await with_timeout(
                category_data_repo.get_by_id(session, namespace, category.slug, data_id)
            )
        if record is None:
            raise CategoryDataNotFoundError(f"Category data {data_id} not found")
        return record

    async def list_page(
        self, scope: TenantScope, category_id: str, page: PageRequest
    ) -> tuple[list[dict[str, Any]], int]:
        category = await self._categories.get_by_id(category_id)
        namespace = org_namespace(scope.org_slug)
        table = category_data_table(namespace, category.slug)

        async def _prepare(session: AsyncSession) -> None:
            await open_namespace(session, namespace, table)

        return await fetch_page(
            self._session_factory,
            page,
            fetch=lambda session, offset, limit: category_data_repo.list_page(
                session, namespace, category.slug, offset=offset, limit=limit
            ),
            count=lambda session: category_data_repo.count_all(session, namespace, category.slug),
            prepare=_prepare,
        )

    async def update_metadata(
        self,
        scope: TenantScope,
        category_id: str,
        data_id: str,
        metadata: ValueMap,
    ) -> dict[str, Any]:
        category = await self._categories.get_by_id(category_id)
        namespace = org_namespace(scope.org_slug)
        async with self._session_factory() as session:
            await open_namespace(session, namespace, category_data_table(namespace, category.slug))
            record = await with_timeout(
                category_data_repo.get_by_id(session, namespace, category.slug, data_id)
            )
            if record is None:
                raise CategoryDataNotFoundError(f"Category data {data_id} not found")
            await with_timeout(
                category_data_repo.replace_metadata(
                    session,
                    namespace,
                    category.slug,
                    data_id,
                    metadata=metadata,
                    updated_by=scope.user_id,
                )
            )
            await session.commit()
        return {**record, "metadata": metadata, "updated_at": utc_now(), "updated_by": scope.user_id}

    async def get_by_collection(self, scope: TenantScope, collection: str, data_id: str) -> dict[str, Any]:
        # Scan history stores the collection name; strip the suffix to recover the category slug.
        category_slug = collection.removesuffix(DATA_TABLE_SUFFIX)
        namespace = org_namespace(scope.org_slug)
        async with self._session_factory() as session:
            await open_namespace(session, namespace, category_data_table(namespace, category_slug))
            record = await with_timeout(
                category_data_repo.get_by_id(session, namespace, category_slug, data_id)
            )
        if record is None:
            raise CategoryDataNotFoundError(f"Category data {data_id} not found")
        return record
