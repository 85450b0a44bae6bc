from __future__ import annotations

from contextlib import asynccontextmanager
import json
import time
from typing import Any, Callable
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.openapi.docs import get_swagger_ui_html
from fastapi.openapi.utils import get_openapi
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from exto.apps.api.errors import (
    exto_exception_handler,
    http_exception_handler,
    timeout_exception_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)
from exto.apps.api.response import API_VERSION, VERSION_PREFIX, success_body, wants_envelope
from exto.apps.api.routes.auth import router as auth_router
from exto.apps.api.routes.batches import router as batches_router
from exto.apps.api.routes.billing import router as billing_router
from exto.apps.api.routes.categories import router as categories_router
from exto.apps.api.routes.documents import router as documents_router
from exto.apps.api.routes.health import router as health_router
from exto.apps.api.routes.ops import router as ops_router
from exto.apps.api.routes.scan_history import router as scan_history_router
from exto.apps.api.routes.scans import router as scans_router
from exto.core.config import get_settings
from exto.core.errors import ExtoError
from exto.core.logging import configure_logging, request_id_var
from exto.services.container import Services, build_services
from exto.services.telemetry import record_request


ROUTERS = (
    health_router,
    auth_router,
    categories_router,
    documents_router,
    scans_router,
    scan_history_router,
    batches_router,
    billing_router,
    ops_router,
)

# Routes reachable without a caller identity.
PUBLIC_PATHS = {f"{VERSION_PREFIX}/health"}

EXCEPTION_HANDLERS: tuple[tuple[type[BaseException], Callable[..., Any]], ...] = (
    (StarletteHTTPException, http_exception_handler),
    (HTTPException, http_exception_handler),
    (RequestValidationError, validation_exception_handler),
    (ExtoError, exto_exception_handler),
    (TimeoutError, timeout_exception_handler),
    (Exception, unhandled_exception_handler),
)

_REBUILT_HEADERS = {"content-length", "content-type"}


async def _enveloped(response: Response, request_id: str) -> Response:
    # Middleware responses only expose the body as an async iterator.
    raw = b"".join([chunk async for chunk in response.body_iterator])  # type: ignore[attr-defined]
    payload = json.loads(raw) if raw else None
    wrapped = JSONResponse(content=success_body(request_id, payload), status_code=response.status_code)
    for name, value in response.headers.items():
        if name.lower() not in _REBUILT_HEADERS:
            wrapped.headers[name] = value
    return wrapped


def _openapi_builder(app: FastAPI) -> Callable[[], dict[str, Any]]:
    def build() -> dict[str, Any]:
        if app.openapi_schema is None:
            schema = get_openapi(title=app.title, version=API_VERSION, routes=app.routes)
            schemes = schema.setdefault("components", {}).setdefault("securitySchemes", {})
            schemes["BearerAuth"] = {"type": "http", "scheme": "bearer"}
            for path, operations in schema.get("paths", {}).items():
                if path in PUBLIC_PATHS:
                    continue
                for operation in operations.values():
                    operation.setdefault("security", [{"BearerAuth": []}])
            app.openapi_schema = schema
        return app.openapi_schema

    return build


def create_app(services: Services | None = None) -> FastAPI:
    """Build the API; tests pass a service graph wired to fake providers."""
    configure_logging()
    settings = get_settings()
    services = services or build_services()

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        yield
        # Let in-flight meter events finish before the loop closes.
        await services.metering.drain()

    app = FastAPI(title="Exto API", lifespan=lifespan)
    app.state.services = services

    @app.middleware("http")
    async def request_envelope(request: Request, call_next):  # type: ignore[override]
        request_id = request.headers.get("X-Request-Id") or str(uuid4())
        request.state.request_id = request_id
        token = request_id_var.set(request_id)
        started = time.monotonic()
        try:
            response = await call_next(request)
        finally:
            request_id_var.reset(token)
        record_request(
            path=request.url.path,
            status_code=response.status_code,
            latency_ms=(time.monotonic() - started) * 1000.0,
        )
        if wants_envelope(request, response.status_code, response.headers.get("content-type", "")):
            response = await _enveloped(response, request_id)
        response.headers.setdefault("X-Request-Id", request_id)
        return response

    for exc_class, handler in EXCEPTION_HANDLERS:
        app.add_exception_handler(exc_class, handler)

    for router in ROUTERS:
        app.include_router(router, prefix=VERSION_PREFIX)

    @app.get(f"{VERSION_PREFIX}/openapi.json", include_in_schema=False)
    async def versioned_openapi() -> JSONResponse:
        return JSONResponse(app.openapi())

    @app.get(f"{VERSION_PREFIX}/docs", include_in_schema=False)
    async def versioned_docs() -> HTMLResponse:
        return get_swagger_ui_html(
            openapi_url=f"{VERSION_PREFIX}/openapi.json",
            title=f"{settings.app_name} API {API_VERSION}",
        )

    @app.get("/docs", include_in_schema=False)
    async def docs_redirect() -> RedirectResponse:
        return RedirectResponse(url=f"{VERSION_PREFIX}/docs")

    app.openapi = _openapi_builder(app)  # type: ignore[method-assign]
    return app


app = create_app()
