from __future__ import annotations

from datetime import datetime
import json
from typing import Any

from fastapi import APIRouter, Body, Depends, File, Form, UploadFile
from pydantic import BaseModel, ConfigDict

from exto.apps.api.deps import get_scope, get_services, page_params, read_upload, require_id
from exto.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from exto.apps.api.response import SuccessEnvelope
from exto.core.errors import InvalidInputError
from exto.domain.schema import FieldDef
from exto.persistence.pagination import PageRequest, PageResponse
from exto.services.category_data import TenantScope
from exto.services.container import Services


router = APIRouter(prefix="/categories", tags=["categories"], responses=DEFAULT_ERROR_RESPONSES)


class CategoryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    slug: str
    version: int
    primary_field: str | None = None
    fields: list[FieldDef]
    summary: str | None = None
    is_active: bool
    created_at: datetime | None = None
    updated_at: datetime | None = None


class FormatResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    category_id: str
    name: str
    format_number: int
    is_active: bool
    extraction_fields: list[dict[str, Any]]
    extracted_sample: dict[str, Any] | None = None
    created_at: datetime | None = None


def _parse_metadata_form(raw: str) -> dict[str, Any]:
    # Multipart clients send the record as a JSON string in the "data" field.
    try:
        data = json.loads(raw)
    except ValueError as exc:
        raise InvalidInputError("Invalid category data: invalid JSON format") from exc
    if not isinstance(data, dict):
        raise InvalidInputError("Invalid category data: expected a JSON object")
    return data


@router.get("", response_model=SuccessEnvelope[PageResponse[CategoryResponse]] | PageResponse[CategoryResponse])
async def list_categories(
    page: PageRequest = Depends(page_params),
    _scope: TenantScope = Depends(get_scope),
    services: Services = Depends(get_services),
) -> PageResponse[CategoryResponse]:
    categories, total = await services.categories.list_page(page)
    return PageResponse[CategoryResponse](
        total_count=total,
        page=page.page,
        page_size=page.page_size,
        items=[CategoryResponse.model_validate(category) for category in categories],
    )


@router.get("/{category_id}", response_model=SuccessEnvelope[CategoryResponse] | CategoryResponse)
async def get_category(
    category_id: str,
    _scope: TenantScope = Depends(get_scope),
    services: Services = Depends(get_services),
) -> CategoryResponse:
    category = await services.categories.get_by_id(require_id(category_id, "category"))
    return CategoryResponse.model_validate(category)


@router.get("/{category_id}/formats", response_model=SuccessEnvelope[list[FormatResponse]] | list[FormatResponse])
async def list_formats(
    category_id: str,
    _scope: TenantScope = Depends(get_scope),
    services: Services = Depends(get_services),
) -> list[FormatResponse]:
    category = await services.categories.get_by_id(require_id(category_id, "category"))
    formats = await services.formats.list_by_category(category.id)
    return [FormatResponse.model_validate(fmt) for fmt in formats]


@router.get("/{category_id}/data")
async def list_category_data(
    category_id: str,
    page: PageRequest = Depends(page_params),
    scope: TenantScope = Depends(get_scope),
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    items, total = await services.category_data.list_page(scope, require_id(category_id, "category"), page)
    return {"total_count": total, "page": page.page, "page_size": page.page_size, "items": items}


@router.get("/{category_id}/data/{data_id}")
async def get_category_data(
    category_id: str,
    data_id: str,
    scope: TenantScope = Depends(get_scope),
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    return await services.category_data.get(
        scope, require_id(category_id, "category"), require_id(data_id, "category data")
    )


@router.post("/{category_id}/data", status_code=201)
async def create_category_data(
    category_id: str,
    file: UploadFile = File(...),
    data: str = Form(...),
    scope: TenantScope = Depends(get_scope),
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    """Store a user-entered record together with its source document."""
    category_id = require_id(category_id, "category")
    metadata = _parse_metadata_form(data)
    content = await read_upload(file)
    return await services.scans.create_manual(
        scope,
        category_id=category_id,
        metadata=metadata,
        filename=file.filename or "document",
        data=content,
    )


@router.patch("/{category_id}/data/{data_id}")
async def update_category_data(
    category_id: str,
    data_id: str,
    metadata: dict[str, Any] = Body(...),
    scope: TenantScope = Depends(get_scope),
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    # The body is the complete replacement metadata map.
    return await services.category_data.update_metadata(
        scope,
        require_id(category_id, "category"),
        require_id(data_id, "category data"),
        metadata,
    )
