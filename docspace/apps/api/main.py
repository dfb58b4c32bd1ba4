from __future__ import annotations

from contextlib import asynccontextmanager
import logging
import time
from typing import AsyncIterator
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.openapi.utils import get_openapi
from starlette.exceptions import HTTPException as StarletteHTTPException

from docspace.apps.api.errors import (
    access_denied_exception_handler,
    ai_exception_handler,
    conversation_exception_handler,
    http_exception_handler,
    not_found_exception_handler,
    provider_config_exception_handler,
    starlette_http_exception_handler,
    unhandled_exception_handler,
    upload_validation_exception_handler,
    validation_exception_handler,
)
from docspace.apps.api.response import API_VERSION
from docspace.apps.api.routes.ai import router as ai_router
from docspace.apps.api.routes.auth import router as auth_router
from docspace.apps.api.routes.dashboard import router as dashboard_router
from docspace.apps.api.routes.documents import router as documents_router
from docspace.apps.api.routes.health import router as health_router
from docspace.apps.api.routes.upload import router as upload_router
from docspace.apps.api.routes.users import router as users_router
from docspace.apps.api.routes.workspaces import router as workspaces_router
from docspace.core.config import get_settings
from docspace.core.errors import (
    AccessDeniedError,
    AIError,
    ConversationError,
    NotFoundError,
    ProviderConfigError,
    UploadValidationError,
)
from docspace.core.logging import configure_logging
from docspace.services.processing import drain_background_tasks


logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    yield
    # Let in-flight extraction finish writing its outcome before shutdown.
    await drain_background_tasks()


def create_app() -> FastAPI:
    configure_logging()
    settings = get_settings()
    app = FastAPI(title="docspace API", lifespan=lifespan)

    origins = [origin.strip() for origin in settings.cors_allowed_origins.split(",") if origin.strip()]
    if origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
            expose_headers=["X-Request-Id", "Retry-After", "X-RateLimit-Remaining"],
        )

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):  # type: ignore[override]
        # Preserve incoming request IDs or assign a new one for traceability.
        request_id = request.headers.get("X-Request-Id") or str(uuid4())
        request.state.request_id = request_id
        start = time.monotonic()
        response = await call_next(request)
        latency_ms = (time.monotonic() - start) * 1000.0
        logger.info(
            "request_complete method=%s path=%s status=%s latency_ms=%.1f request_id=%s",
            request.method,
            request.url.path,
            response.status_code,
            latency_ms,
            request_id,
        )
        response.headers.setdefault("X-Request-Id", request_id)
        return response

    app.add_exception_handler(StarletteHTTPException, starlette_http_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(NotFoundError, not_found_exception_handler)
    app.add_exception_handler(AccessDeniedError, access_denied_exception_handler)
    app.add_exception_handler(UploadValidationError, upload_validation_exception_handler)
    app.add_exception_handler(AIError, ai_exception_handler)
    app.add_exception_handler(ConversationError, conversation_exception_handler)
    app.add_exception_handler(ProviderConfigError, provider_config_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    for router in (
        health_router,
        auth_router,
        users_router,
        workspaces_router,
        documents_router,
        upload_router,
        ai_router,
        dashboard_router,
    ):
        app.include_router(router, prefix=f"/{API_VERSION}")

    def custom_openapi() -> dict:
        # Inject bearer auth into the OpenAPI schema for every non-public route.
        if app.openapi_schema:
            return app.openapi_schema
        schema = get_openapi(title="docspace API", version=API_VERSION, routes=app.routes)
        components = schema.setdefault("components", {})
        components.setdefault("securitySchemes", {})["BearerAuth"] = {"type": "http", "scheme": "bearer"}
        public_paths = {f"/{API_VERSION}/health"}
        for path, operations in schema.get("paths", {}).items():
            if path in public_paths:
                continue
            for operation in operations.values():
                operation.setdefault("security", [{"BearerAuth": []}])
        app.openapi_schema = schema
        return app.openapi_schema

    app.openapi = custom_openapi  # type: ignore[method-assign]

    return app


app = create_app()
