from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.openapi.utils import get_openapi

from linkvault.apps.api.errors import install_exception_handlers
from linkvault.apps.api.response import API_VERSION, REQUEST_ID_HEADER, get_request_id
from linkvault.apps.api.routes.admin import router as admin_router
from linkvault.apps.api.routes.brands import router as brands_router
from linkvault.apps.api.routes.health import router as health_router
from linkvault.apps.api.routes.links import router as links_router
from linkvault.apps.api.routes.partners import router as partners_router
from linkvault.apps.api.routes.payments import router as payments_router
from linkvault.apps.api.routes.sales import router as sales_router
from linkvault.core.config import validate_required_secrets
from linkvault.core.logging import configure_logging


_PUBLIC_PATHS = {
    "/v1/health",
    "/v1/links/validate",
    "/v1/links/mark-used",
    "/v1/links/mark-sold",
    "/v1/payments/webhook",
    "/v1/sales",
    "/v1/partners/signup",
    "/v1/partners/login",
    "/v1/brands/{owner_id}",
}


def create_app() -> FastAPI:
    configure_logging()
    # Refuse to start without the secrets every request path depends on.
    validate_required_secrets()
    app = FastAPI(title="LinkVault API")

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):  # type: ignore[override]
        request_id = get_request_id(request)
        response = await call_next(request)
        response.headers.setdefault(REQUEST_ID_HEADER, request_id)
        return response

    install_exception_handlers(app)

    prefix = f"/{API_VERSION}"
    app.include_router(health_router, prefix=prefix)
    app.include_router(links_router, prefix=prefix)
    app.include_router(payments_router, prefix=prefix)
    app.include_router(sales_router, prefix=prefix)
    app.include_router(partners_router, prefix=prefix)
    app.include_router(brands_router, prefix=prefix)
    app.include_router(admin_router, prefix=prefix)

    def custom_openapi() -> dict:
        # Document partner bearer auth and the admin key header on protected routes.
        if app.openapi_schema:
            return app.openapi_schema
        schema = get_openapi(title="LinkVault API", version=API_VERSION, routes=app.routes)
        components = schema.setdefault("components", {})
        security_schemes = components.setdefault("securitySchemes", {})
        security_schemes["BearerAuth"] = {"type": "http", "scheme": "bearer"}
        security_schemes["AdminKey"] = {"type": "apiKey", "in": "header", "name": "X-Admin-Key"}
        for path, operations in schema.get("paths", {}).items():
            if path in _PUBLIC_PATHS:
                continue
            scheme = "AdminKey" if path.startswith("/v1/admin") or path == "/v1/links/batch" else "BearerAuth"
            for operation in operations.values():
                operation.setdefault("security", [{scheme: []}])
        app.openapi_schema = schema
        return app.openapi_schema

    app.openapi = custom_openapi

    return app
