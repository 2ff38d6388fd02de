"""Tier list entitlement webhooks: FastAPI application entry point."""

import signal
import threading
import uuid
from contextlib import asynccontextmanager

# CRITICAL ORDER: configure_structlog MUST be called before all other app imports
# to avoid the structlog cache pitfall (structlog caches the processor chain on first use).
from entitlement_engine.core.logging import configure_structlog
from entitlement_engine.core.config import get_settings as _get_settings_early

_early_settings = _get_settings_early()
configure_structlog(
    log_level="DEBUG" if _early_settings.debug else "INFO",
    json_logs=not _early_settings.debug,
)

import structlog

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from entitlement_engine.api.routes import api_router
from entitlement_engine.core.config import Settings, get_settings
from entitlement_engine.db import close_db, init_db
from entitlement_engine.engine import build_engine
from entitlement_engine.integrations.whop import WhopIdentityClient
from entitlement_engine.middleware.correlation import (
    get_correlation_id,
    setup_correlation_middleware,
)

logger = structlog.get_logger(__name__)


def _make_lifespan(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession] | None,
    identity_client: WhopIdentityClient | None,
):
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan: database, Whop client and worker pool."""
        # Graceful shutdown flag: the SIGTERM handler flips it so the health check returns 503
        app.state.shutting_down = False

        def handle_sigterm(signum, frame):
            app.state.shutting_down = True
            logger.info("sigterm_received", action="health_check_503_draining_webhooks")

        if threading.current_thread() is threading.main_thread():
            signal.signal(signal.SIGTERM, handle_sigterm)

        logger.info("startup_begin", app_name=settings.app_name, debug=settings.debug)

        owns_db = session_factory is None
        factory = session_factory or await init_db(
            settings.database_url, create_tables=settings.database_create_tables
        )
        app.state.session_factory = factory
        logger.info("db_initialized")

        engine = build_engine(settings, factory, identity_client=identity_client)
        await engine.start()
        app.state.engine = engine
        logger.info(
            "webhook_engine_started",
            workers=settings.webhook_worker_count,
            revocation_policy=settings.entitlement_revocation_policy,
        )

        yield

        logger.info("shutdown_begin")
        await engine.shutdown()
        if owns_db:
            await close_db()
        logger.info("shutdown_complete")

    return lifespan


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Global exception handler for unhandled errors with debug_id tracking.

    Logs full exception with traceback, returns generic 500 to client.
    """
    debug_id = str(uuid.uuid4())

    logger.error(
        "unhandled_exception",
        debug_id=debug_id,
        correlation_id=get_correlation_id(),
        path=request.url.path,
        method=request.method,
        error=str(exc),
        error_type=type(exc).__name__,
        exc_info=True,
    )

    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error", "debug_id": debug_id},
    )


def create_app(
    settings: Settings | None = None,
    *,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    identity_client: WhopIdentityClient | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Tests pass explicit settings, a session factory and a stub identity client;
    production builds everything from the environment.
    """
    settings = settings or get_settings()

    app = FastAPI(
        title=settings.app_name,
        description="Whop webhook ingestion and tier list entitlement reconciliation",
        version="0.1.0",
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=_make_lifespan(settings, session_factory, identity_client),
    )
    app.state.settings = settings

    # Correlation ID middleware (runs first on incoming requests)
    setup_correlation_middleware(app)

    app.exception_handler(Exception)(generic_exception_handler)

    app.include_router(api_router, prefix="/api")

    return app


# Create the app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "entitlement_engine.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
