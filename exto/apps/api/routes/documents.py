from __future__ import annotations

from dataclasses import asdict
from typing import Any

from fastapi import APIRouter, Depends, File, UploadFile
from pydantic import BaseModel, Field

from exto.apps.api.deps import get_scope, get_services, read_upload
from exto.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from exto.apps.api.response import SuccessEnvelope
from exto.domain.schema import FieldDef
from exto.services.category_data import TenantScope
from exto.services.container import Services
from exto.services.document_analysis import DocumentCategory, KeyValue


router = APIRouter(prefix="/documents", tags=["documents"], responses=DEFAULT_ERROR_RESPONSES)


class AnalyzeResponse(BaseModel):
    category: DocumentCategory
    key_values: list[KeyValue]
    suggested_fields: list[FieldDef]
    existing_category_id: str | None = None
    is_new_category: bool
    page_count: int


class SaveFieldsRequest(BaseModel):
    # Either a {key: value} map or a list of {key, value, description} triples.
    extracted_fields: dict[str, Any] | list[dict[str, Any]]
    summary: str | None = None


class SaveFieldsResponse(BaseModel):
    category_id: str
    category_name: str
    is_new_category: bool
    has_new_fields: bool
    new_fields: list[str] = Field(default_factory=list)
    format_id: str | None = None
    format_number: int | None = None


@router.post("/analyze", response_model=SuccessEnvelope[AnalyzeResponse] | AnalyzeResponse)
async def analyze_document(
    file: UploadFile = File(...),
    _scope: TenantScope = Depends(get_scope),
    services: Services = Depends(get_services),
) -> AnalyzeResponse:
    """Suggest a category and a field schema for an unseen document."""
    data = await read_upload(file)
    result = await services.analyzer.analyze(data)
    return AnalyzeResponse(
        category=result.category,
        key_values=result.key_values,
        suggested_fields=result.suggested_fields,
        existing_category_id=result.existing_category_id,
        is_new_category=result.is_new_category,
        page_count=result.page_count,
    )


@router.post(
    "/{category}/fields",
    status_code=201,
    response_model=SuccessEnvelope[SaveFieldsResponse] | SaveFieldsResponse,
)
async def save_extracted_fields(
    category: str,
    payload: SaveFieldsRequest,
    scope: TenantScope = Depends(get_scope),
    services: Services = Depends(get_services),
) -> SaveFieldsResponse:
    # ``category`` is an existing category id or the name of a category to create.
    result = await services.analyzer.save_extracted_fields(
        category,
        payload.extracted_fields,
        summary=payload.summary,
        created_by=scope.user_id,
    )
    return SaveFieldsResponse(**asdict(result))
