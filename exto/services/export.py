from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
import json
import logging
import os
from typing import Any, Callable

from openpyxl import Workbook

from exto.core.config import get_settings
from exto.domain.schema import FieldDef, format_label, parse_fields
from exto.services.categories import CategoryRegistry
from exto.services.category_data import CategoryDataService, TenantScope
from exto.services.scan_history import ScanHistoryService


logger = logging.getLogger(__name__)

HEADER_SHEET = "Header"
# Excel rejects sheet titles longer than this.
MAX_SHEET_TITLE = 31


@dataclass(frozen=True)
class ExportResult:
    file_path: str
    file_name: str


def _label(field: FieldDef) -> str:
    return field.label or format_label(field.name)


def _cell_value(value: Any) -> Any:
    # Nested values have no cell representation; write them as JSON text.
    if isinstance(value, (dict, list)):
        return json.dumps(value, default=str)
    return value


def _write_row(sheet, row_index: int, columns: list[FieldDef], values: dict[str, Any]) -> None:
    for column_index, field in enumerate(columns, start=1):
        value = values.get(field.name)
        # Missing values stay blank.
        if value is None:
            continue
        sheet.cell(row=row_index, column=column_index, value=_cell_value(value))


def _write_header(sheet, columns: list[FieldDef]) -> None:
    for column_index, field in enumerate(columns, start=1):
        sheet.cell(row=1, column=column_index, value=_label(field))


def build_workbook(fields: list[FieldDef], metadata: dict[str, Any]) -> Workbook:
    """Project one record onto a workbook.

    Scalar fields go to the "Header" sheet (labels in row 1, values in row 2);
    every top-level table field gets its own sheet with one row per metadata
    entry, columns in the table's child order. Deeper tables become JSON
    cells in their parent row.
    """
    workbook = Workbook()
    header = workbook.active
    header.title = HEADER_SHEET

    scalars = [field for field in fields if not field.is_table]
    _write_header(header, scalars)
    _write_row(header, 2, scalars, metadata)

    for table in (field for field in fields if field.is_table):
        sheet = workbook.create_sheet(title=table.name[:MAX_SHEET_TITLE])
        columns = list(table.children)
        _write_header(sheet, columns)
        rows = metadata.get(table.name)
        if not isinstance(rows, list):
            continue
        row_index = 2
        for row in rows:
            if not isinstance(row, dict):
                continue
            _write_row(sheet, row_index, columns, row)
            row_index += 1
    return workbook


def export_file_name(slug: str, now: datetime) -> str:
    return f"export_{slug}_{now.strftime('%Y_%m_%d_%H_%M_%S')}.xlsx"


def _save(workbook: Workbook, directory: str, path: str) -> None:
    os.makedirs(directory, exist_ok=True)
    workbook.save(path)


class ExportService:
    def __init__(
        self,
        *,
        categories: CategoryRegistry,
        category_data: CategoryDataService,
        scan_history: ScanHistoryService,
        time_provider: Callable[[], datetime] | None = None,
    ) -> None:
        self._categories = categories
        self._category_data = category_data
        self._scan_history = scan_history
        self._now = time_provider or (lambda: datetime.now(timezone.utc))
        self._settings = get_settings()

    async def export_as_excel(self, scope: TenantScope, scan_history_id: str) -> ExportResult:
        entry = await self._scan_history.get(scope, scan_history_id)
        category = await self._categories.get_by_id(entry["category_id"])
        record = await self._category_data.get(scope, category.id, entry["category_data_id"])

        workbook = build_workbook(parse_fields(category.fields), record.get("metadata") or {})
        file_name = export_file_name(category.slug, self._now())
        directory = os.path.join(self._settings.export_dir, scope.org_id)
        file_path = os.path.join(directory, file_name)
        await asyncio.to_thread(_save, workbook, directory, file_path)
        logger.info("export written scan_history_id=%s path=%s", scan_history_id, file_path)
        return ExportResult(file_path=file_path, file_name=file_name)
