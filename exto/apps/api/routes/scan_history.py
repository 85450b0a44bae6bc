from __future__ import annotations

import os
from typing import Any

from fastapi import APIRouter, Depends
from fastapi.responses import FileResponse

from exto.apps.api.deps import get_scope, get_services, page_params, require_id
from exto.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from exto.persistence.pagination import PageRequest
from exto.services.category_data import TenantScope
from exto.services.container import Services


router = APIRouter(tags=["scan-history"], responses=DEFAULT_ERROR_RESPONSES)

_XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


@router.get("/scan-history")
async def list_scan_history(
    page: PageRequest = Depends(page_params),
    scope: TenantScope = Depends(get_scope),
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    # Newest first.
    items, total = await services.scan_history.list_page(scope, page)
    return {"total_count": total, "page": page.page, "page_size": page.page_size, "items": items}


@router.get("/scan-history/data/{scan_history_id}")
async def get_scan_history_data(
    scan_history_id: str,
    scope: TenantScope = Depends(get_scope),
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    return await services.scan_history.get_data(scope, require_id(scan_history_id, "scan history"))


@router.get("/scan-history/document/{scan_history_id}", response_class=FileResponse)
async def download_scan_document(
    scan_history_id: str,
    scope: TenantScope = Depends(get_scope),
    services: Services = Depends(get_services),
) -> FileResponse:
    path = await services.scan_history.document_path(scope, require_id(scan_history_id, "scan history"))
    return FileResponse(path, filename=os.path.basename(path))


@router.get("/export/{scan_history_id}", response_class=FileResponse)
async def export_scan(
    scan_history_id: str,
    scope: TenantScope = Depends(get_scope),
    services: Services = Depends(get_services),
) -> FileResponse:
    result = await services.export.export_as_excel(scope, require_id(scan_history_id, "scan history"))
    return FileResponse(result.file_path, media_type=_XLSX_MEDIA_TYPE, filename=result.file_name)
