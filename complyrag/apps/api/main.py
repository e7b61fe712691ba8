from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from complyrag.apps.api.errors import (
    domain_exception_handler,
    http_exception_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)
from complyrag.apps.api.response import API_VERSION
from complyrag.apps.api.routes.documents import router as documents_router
from complyrag.apps.api.routes.entities import router as entities_router
from complyrag.apps.api.routes.health import router as health_router
from complyrag.apps.api.routes.search import router as search_router
from complyrag.apps.api.routes.suggestions import router as suggestions_router
from complyrag.core.errors import ComplyError
from complyrag.core.logging import configure_logging
from complyrag.services.container import ServiceContainer, build_container, close_container


logger = logging.getLogger(__name__)


def create_app(container: ServiceContainer | None = None) -> FastAPI:
    """Build the API; tests pass a container wired with fakes."""
    configure_logging()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        owned = container is None
        app.state.container = container or build_container()
        try:
            yield
        finally:
            # Injected containers belong to the caller and are closed by it.
            if owned:
                await close_container(app.state.container)

    app = FastAPI(title="ComplyRAG API", version=API_VERSION, lifespan=lifespan)
    if container is not None:
        # ASGI transports used in tests do not run the lifespan.
        app.state.container = container

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):  # type: ignore[override]
        # Preserve incoming request IDs or assign a new one for traceability.
        request_id = request.headers.get("X-Request-Id") or str(uuid4())
        request.state.request_id = request_id
        start = time.monotonic()
        response = await call_next(request)
        latency_ms = (time.monotonic() - start) * 1000.0
        response.headers.setdefault("X-Request-Id", request_id)
        logger.info(
            "request_done method=%s path=%s status=%s latency_ms=%.1f request_id=%s",
            request.method,
            request.url.path,
            response.status_code,
            latency_ms,
            request_id,
        )
        return response

    app.add_exception_handler(ComplyError, domain_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    for router in (
        documents_router,
        suggestions_router,
        search_router,
        entities_router,
        health_router,
    ):
        app.include_router(router, prefix=f"/{API_VERSION}")

    return app


app = create_app()
