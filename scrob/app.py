from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from scrob.api.error_handling import register_exception_handlers
from scrob.api.graphql import build_graphql_router
from scrob.api.routes import router
from scrob.logging import get_logger, set_correlation_id
from scrob.service.runtime import Runtime

logger = get_logger(__name__)

__version__ = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("app_started", version=__version__)
    yield
    try:
        app.state.runtime.close()
    except Exception as exc:
        logger.error("shutdown_failed", error=str(exc))


def create_app(runtime: Optional[Runtime] = None) -> FastAPI:
    """Build the HTTP application around ``runtime``.

    Without an explicit runtime one is built from the environment. Run with
    ``uvicorn --factory scrob.app:create_app`` or ``python -m scrob``.
    """
    runtime = runtime or Runtime()
    settings = runtime.settings

    app = FastAPI(title="Scrob", version=__version__, lifespan=lifespan)
    app.state.runtime = runtime

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "X-Request-ID"],
        expose_headers=["X-Request-ID"],
        max_age=3600,
    )

    @app.middleware("http")
    async def add_correlation_id(request: Request, call_next):
        """Tag logs with the caller's X-Request-ID, or a generated one, and echo it back."""
        correlation_id = set_correlation_id(request.headers.get("X-Request-ID"))
        response = await call_next(request)
        response.headers["X-Request-ID"] = correlation_id
        return response

    register_exception_handlers(app)
    app.include_router(router)
    app.include_router(build_graphql_router(), prefix="/graphql")

    @app.get("/health", tags=["health"])
    async def health() -> Dict[str, Any]:
        return {"status": "ok", "version": __version__}

    return app
