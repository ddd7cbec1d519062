from __future__ import annotations

from uuid import uuid4

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.openapi.docs import get_swagger_ui_html
from fastapi.openapi.utils import get_openapi
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from privacycore.apps.api.errors import (
    http_exception_handler,
    privacy_core_exception_handler,
    starlette_http_exception_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)
from privacycore.apps.api.response import API_VERSION, REQUEST_ID_HEADER
from privacycore.apps.api.routes.compliance import router as compliance_router
from privacycore.apps.api.routes.privacy import dsar_router
from privacycore.apps.api.routes.privacy import router as privacy_router
from privacycore.apps.api.sensitive_access import SensitiveAccessMiddleware
from privacycore.core.errors import PrivacyCoreError
from privacycore.core.logging import configure_logging
from privacycore.services.context import PrivacyCore, build_privacy_core


def create_app(core: PrivacyCore | None = None, *, await_access_logging: bool = False) -> FastAPI:
    configure_logging()
    app = FastAPI(title="PrivacyCore API")
    app.state.privacy_core = core or build_privacy_core()

    # Gate and audit host routes that carry PHI, PII or financial data.
    app.add_middleware(SensitiveAccessMiddleware, await_logging=await_access_logging)

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):  # type: ignore[override]
        # Preserve incoming request IDs or assign a new one for traceability.
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid4())
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers.setdefault(REQUEST_ID_HEADER, request_id)
        return response

    @app.exception_handler(StarletteHTTPException)
    async def _starlette_http_exception_handler(request: Request, exc: StarletteHTTPException):
        return await starlette_http_exception_handler(request, exc)

    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(request: Request, exc: Exception):
        return await unhandled_exception_handler(request, exc)

    @app.exception_handler(RequestValidationError)
    async def _validation_exception_handler(request: Request, exc: RequestValidationError):
        return await validation_exception_handler(request, exc)

    @app.exception_handler(HTTPException)
    async def _http_exception_handler(request: Request, exc: HTTPException):
        return await http_exception_handler(request, exc)

    @app.exception_handler(PrivacyCoreError)
    async def _privacy_core_exception_handler(request: Request, exc: PrivacyCoreError):
        return await privacy_core_exception_handler(request, exc)

    # Mount versioned v1 API routes.
    app.include_router(privacy_router, prefix=f"/{API_VERSION}")
    # DSAR reads go through the masked route class.
    app.include_router(dsar_router, prefix=f"/{API_VERSION}")
    app.include_router(compliance_router, prefix=f"/{API_VERSION}")

    @app.get("/v1/openapi.json", include_in_schema=False)
    async def openapi_json() -> JSONResponse:
        return JSONResponse(app.openapi())

    @app.get("/v1/docs", include_in_schema=False)
    async def v1_docs() -> HTMLResponse:
        return get_swagger_ui_html(openapi_url="/v1/openapi.json", title="PrivacyCore API v1")

    @app.get("/docs", include_in_schema=False)
    async def docs_redirect() -> RedirectResponse:
        return RedirectResponse(url="/v1/docs")

    def custom_openapi() -> dict:
        # Inject bearer auth and version metadata into the OpenAPI schema.
        if app.openapi_schema:
            return app.openapi_schema
        schema = get_openapi(
            title="PrivacyCore API",
            version=API_VERSION,
            routes=app.routes,
        )
        schema["servers"] = [{"url": "http://localhost:8000"}]
        components = schema.setdefault("components", {})
        security_schemes = components.setdefault("securitySchemes", {})
        security_schemes["BearerAuth"] = {"type": "http", "scheme": "bearer"}
        for operations in schema.get("paths", {}).values():
            for operation in operations.values():
                operation.setdefault("security", [{"BearerAuth": []}])
        app.openapi_schema = schema
        return app.openapi_schema

    app.openapi = custom_openapi

    return app


app = create_app()
