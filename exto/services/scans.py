"""Scan pipeline: upload, extract, persist, audit, meter.

Each step depends on the previous one and runs in order. A failure before
persistence leaves only the saved upload behind; metering runs afterwards as a
background task and its failures are logged only.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
import time
from typing import Any
from uuid import uuid4

from exto.core.config import get_settings
from exto.domain.schema import ValueMap
from exto.services.batches import BatchService
from exto.services.categories import CategoryRegistry
from exto.services.category_data import CategoryDataService, TenantScope
from exto.services.extraction import ExtractionClient
from exto.services.file_paths import UniquePathAllocator
from exto.services.images import image_data_url
from exto.services.metering import MeterService
from exto.services.telemetry import increment_counter


logger = logging.getLogger(__name__)

SCAN_METER_EVENT = "scan"


@dataclass(frozen=True)
class ScanResult:
    batch_id: str
    category_data_id: str
    scan_history_id: str
    scan_code: str
    raw_data: dict[str, Any]


def _write_file(path: str, data: bytes) -> None:
    with open(path, "wb") as handle:
        handle.write(data)


class ScanOrchestrator:
    def __init__(
        self,
        *,
        categories: CategoryRegistry,
        extraction: ExtractionClient,
        category_data: CategoryDataService,
        batches: BatchService,
        metering: MeterService,
        paths: UniquePathAllocator | None = None,
    ) -> None:
        self._categories = categories
        self._extraction = extraction
        self._category_data = category_data
        self._batches = batches
        self._metering = metering
        self._paths = paths or UniquePathAllocator()
        self._settings = get_settings()

    async def save_upload(self, scope: TenantScope, filename: str, data: bytes) -> str:
        path = self._paths.allocate(self._settings.upload_dir, scope.org_id, filename)
        await asyncio.to_thread(_write_file, path, data)
        return path

    async def scan(
        self,
        scope: TenantScope,
        *,
        category_id: str,
        batch_id: str,
        filename: str,
        data: bytes,
    ) -> ScanResult:
        start = time.monotonic()
        # Reject unknown batches and categories before touching disk.
        await self._batches.get(scope.org_slug, batch_id)
        category = await self._categories.get_by_id(category_id)

        file_path = await self.save_upload(scope, filename, data)
        data_url = await asyncio.to_thread(image_data_url, data)
        extraction = await self._extraction.extract(category.id, data_url)
        raw_data = extraction.raw_data()

        created = await self._category_data.create(
            scope,
            category.id,
            metadata=extraction.values,
            raw_data=raw_data,
            file_path=file_path,
            batch_id=batch_id,
        )
        self._metering.schedule(scope.org_id, SCAN_METER_EVENT, 1, created_by=scope.user_id)
        increment_counter("scans.completed")
        logger.info(
            "scan completed org_id=%s category_id=%s scan_code=%s latency_ms=%.1f",
            scope.org_id,
            category.id,
            created.scan_history["scan_code"],
            (time.monotonic() - start) * 1000.0,
        )
        return ScanResult(
            batch_id=batch_id,
            category_data_id=created.category_data["id"],
            scan_history_id=created.scan_history["id"],
            scan_code=created.scan_history["scan_code"],
            raw_data=raw_data,
        )

    async def create_manual(
        self,
        scope: TenantScope,
        *,
        category_id: str,
        metadata: ValueMap,
        filename: str,
        data: bytes,
    ) -> dict[str, Any]:
        """Store a user-supplied record with its document, skipping extraction."""
        category = await self._categories.get_by_id(category_id)
        file_path = await self.save_upload(scope, filename, data)
        # Manual records are not tied to a scan batch; each gets its own batch id.
        created = await self._category_data.create(
            scope,
            category.id,
            metadata=metadata,
            raw_data=dict(metadata),
            file_path=file_path,
            batch_id=uuid4().hex,
        )
        return created.category_data
