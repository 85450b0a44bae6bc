from __future__ import annotations

import asyncio
from typing import Any

from fastapi import APIRouter, Depends, File, Form, UploadFile
from pydantic import BaseModel, Field

from exto.apps.api.deps import get_scope, get_services, read_upload, require_id
from exto.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from exto.apps.api.response import SuccessEnvelope
from exto.services.category_data import TenantScope
from exto.services.container import Services
from exto.services.images import decode_base64_image, image_data_url


router = APIRouter(tags=["scans"], responses=DEFAULT_ERROR_RESPONSES)


class ExtractRequest(BaseModel):
    category_id: str
    # Bare base64 or a data URL.
    base64_image: str = Field(min_length=1)


class ExtractResponse(BaseModel):
    extracted_data: dict[str, Any]
    confidence_scores: dict[str, float]
    average_confidence: float


class ScanResponse(BaseModel):
    batch_id: str
    category_data_id: str
    scan_history_id: str
    scan_code: str
    raw_data: dict[str, Any]


@router.post("/extract", response_model=SuccessEnvelope[ExtractResponse] | ExtractResponse)
async def extract(
    payload: ExtractRequest,
    _scope: TenantScope = Depends(get_scope),
    services: Services = Depends(get_services),
) -> ExtractResponse:
    """Run template extraction on one image without storing anything."""
    category = await services.categories.get_by_id(require_id(payload.category_id, "category"))
    data = decode_base64_image(payload.base64_image)
    data_url = await asyncio.to_thread(image_data_url, data)
    result = await services.extraction.extract(category.id, data_url)
    return ExtractResponse(
        extracted_data=result.values,
        confidence_scores={key: float(score) for key, score in result.confidences.items()},
        average_confidence=result.average_confidence,
    )


@router.post("/scan/document", response_model=SuccessEnvelope[ScanResponse] | ScanResponse)
async def scan_document(
    file: UploadFile = File(...),
    category_id: str = Form(...),
    batch_id: str = Form(...),
    scope: TenantScope = Depends(get_scope),
    services: Services = Depends(get_services),
) -> ScanResponse:
    category_id = require_id(category_id, "category")
    batch_id = require_id(batch_id, "batch")
    data = await read_upload(file)
    result = await services.scans.scan(
        scope,
        category_id=category_id,
        batch_id=batch_id,
        filename=file.filename or "document",
        data=data,
    )
    return ScanResponse(
        batch_id=result.batch_id,
        category_data_id=result.category_data_id,
        scan_history_id=result.scan_history_id,
        scan_code=result.scan_code,
        raw_data=result.raw_data,
    )
