from __future__ import annotations

from typing import Literal

from fastapi import APIRouter
from pydantic import BaseModel

from exto.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from exto.apps.api.response import SuccessEnvelope

router = APIRouter(tags=["health"], responses=DEFAULT_ERROR_RESPONSES)


class Liveness(BaseModel):
    status: Literal["ok"] = "ok"


@router.get("/health", response_model=SuccessEnvelope[Liveness] | Liveness)
async def health() -> Liveness:
    # Liveness only; no database round trip.
    return Liveness()
