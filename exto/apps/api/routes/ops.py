from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, status

from exto.apps.api.deps import get_request_context
from exto.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from exto.apps.api.response import VERSION_PREFIX, SuccessEnvelope
from exto.domain.schema import UserRole
from exto.services.identity import RequestContext
from exto.services.telemetry import counters_snapshot, external_call_stats, p95_latency


router = APIRouter(prefix="/ops", tags=["ops"], responses=DEFAULT_ERROR_RESPONSES)

_OPS_ROLES = {UserRole.super_admin.value, UserRole.organization_admin.value}


def require_ops_role(context: RequestContext = Depends(get_request_context)) -> RequestContext:
    if context.user.role not in _OPS_ROLES:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"code": "AUTH_FORBIDDEN", "message": "Operational metrics require an admin role"},
        )
    return context


@router.get("/metrics", response_model=SuccessEnvelope[dict[str, Any]] | dict[str, Any])
async def ops_metrics(
    window_s: int = Query(default=300, ge=1, le=86400),
    _context: RequestContext = Depends(require_ops_role),
) -> dict[str, Any]:
    # In-process view; each worker process reports its own samples.
    return {
        "window_s": window_s,
        "p95_latency_ms": {
            "all": p95_latency(window_s),
            "scan": p95_latency(window_s, path_prefix=f"{VERSION_PREFIX}/scan"),
            "extract": p95_latency(window_s, path_prefix=f"{VERSION_PREFIX}/extract"),
        },
        "external_calls": external_call_stats(window_s),
        "counters": counters_snapshot(),
    }
