from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends

from exto.apps.api.deps import get_scope, get_services, require_id
from exto.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from exto.services.category_data import TenantScope
from exto.services.container import Services


router = APIRouter(prefix="/batch", tags=["batches"], responses=DEFAULT_ERROR_RESPONSES)


@router.post("", status_code=201)
async def create_batch(
    scope: TenantScope = Depends(get_scope),
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    return await services.batches.create(scope.org_slug, created_by=scope.user_id)


@router.patch("/{batch_id}")
async def close_batch(
    batch_id: str,
    scope: TenantScope = Depends(get_scope),
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    # Closing an already closed batch succeeds without changes.
    return await services.batches.close(scope.org_slug, require_id(batch_id, "batch"), updated_by=scope.user_id)
