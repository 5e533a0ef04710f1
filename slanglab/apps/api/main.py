from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager, suppress
import logging
import time
from typing import AsyncIterator
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.openapi.docs import get_swagger_ui_html
from fastapi.openapi.utils import get_openapi
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from slanglab.apps.api.errors import (
    domain_exception_handler,
    http_exception_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)
from slanglab.apps.api.response import API_VERSION, REQUEST_ID_HEADER
from slanglab.apps.api.routes.access import router as access_router
from slanglab.apps.api.routes.admin_sources import router as admin_sources_router
from slanglab.apps.api.routes.creations import router as creations_router
from slanglab.apps.api.routes.health import router as health_router
from slanglab.apps.api.routes.history import router as history_router
from slanglab.apps.api.routes.lookup import router as lookup_router
from slanglab.apps.api.routes.ops import router as ops_router
from slanglab.apps.api.routes.tracking import router as tracking_router
from slanglab.core.errors import SlangLabError
from slanglab.core.logging import configure_logging
from slanglab.services.sources import start_source_rules_listener


logger = logging.getLogger(__name__)

_PUBLIC_PATHS = {"/v1/health", "/v1/plans", "/v1/access/{capability}", "/v1/usage", "/v1/lookup"}


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    # Cache invalidation listener lives for the process; the TTL covers a missing Redis.
    listener = await start_source_rules_listener()
    try:
        yield
    finally:
        if listener is not None:
            listener.cancel()
            with suppress(asyncio.CancelledError):
                await listener


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(title="SlangLab API", lifespan=lifespan)

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):  # type: ignore[override]
        # Preserve incoming request IDs or assign a new one for traceability.
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid4())
        request.state.request_id = request_id
        start = time.monotonic()
        response = await call_next(request)
        latency_ms = (time.monotonic() - start) * 1000.0
        logger.info(
            "request_completed method=%s path=%s status=%s latency_ms=%.1f request_id=%s",
            request.method,
            request.url.path,
            response.status_code,
            latency_ms,
            request_id,
        )
        response.headers.setdefault(REQUEST_ID_HEADER, request_id)
        return response

    @app.exception_handler(StarletteHTTPException)
    async def _starlette_http_exception_handler(request: Request, exc: StarletteHTTPException):
        return await http_exception_handler(request, exc)

    @app.exception_handler(HTTPException)
    async def _http_exception_handler(request: Request, exc: HTTPException):
        return await http_exception_handler(request, exc)

    @app.exception_handler(RequestValidationError)
    async def _validation_exception_handler(request: Request, exc: RequestValidationError):
        return await validation_exception_handler(request, exc)

    @app.exception_handler(SlangLabError)
    async def _domain_exception_handler(request: Request, exc: SlangLabError):
        return await domain_exception_handler(request, exc)

    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(request: Request, exc: Exception):
        return await unhandled_exception_handler(request, exc)

    # Mount versioned v1 API routes.
    app.include_router(health_router, prefix=f"/{API_VERSION}")
    app.include_router(access_router, prefix=f"/{API_VERSION}")
    app.include_router(lookup_router, prefix=f"/{API_VERSION}")
    app.include_router(history_router, prefix=f"/{API_VERSION}")
    app.include_router(creations_router, prefix=f"/{API_VERSION}")
    app.include_router(tracking_router, prefix=f"/{API_VERSION}")
    # Admin-only operations and source rule management.
    app.include_router(ops_router, prefix=f"/{API_VERSION}")
    app.include_router(admin_sources_router, prefix=f"/{API_VERSION}")

    # Serve versioned OpenAPI JSON and docs endpoints for v1 consumers.
    @app.get("/v1/openapi.json", include_in_schema=False)
    async def openapi_json() -> JSONResponse:
        return JSONResponse(app.openapi())

    @app.get("/v1/docs", include_in_schema=False)
    async def v1_docs() -> HTMLResponse:
        return get_swagger_ui_html(openapi_url="/v1/openapi.json", title="SlangLab API v1")

    @app.get("/docs", include_in_schema=False)
    async def docs_redirect() -> RedirectResponse:
        return RedirectResponse(url="/v1/docs")

    def custom_openapi() -> dict:
        # Inject bearer auth and version metadata into the OpenAPI schema.
        if app.openapi_schema:
            return app.openapi_schema
        schema = get_openapi(
            title="SlangLab API",
            version=API_VERSION,
            routes=app.routes,
        )
        schema["servers"] = [{"url": "http://localhost:8000"}]
        components = schema.setdefault("components", {})
        security_schemes = components.setdefault("securitySchemes", {})
        security_schemes["BearerAuth"] = {"type": "http", "scheme": "bearer"}
        for path, operations in schema.get("paths", {}).items():
            if path in _PUBLIC_PATHS:
                continue
            for operation in operations.values():
                operation.setdefault("security", [{"BearerAuth": []}])
        app.openapi_schema = schema
        return app.openapi_schema

    app.openapi = custom_openapi

    return app


app = create_app()
