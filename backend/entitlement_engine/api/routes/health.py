import structlog
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text

logger = structlog.get_logger(__name__)

router = APIRouter()


@router.get("/health")
async def health_check(request: Request):
    """Health check endpoint for load balancer.

    Returns 503 during graceful shutdown so the load balancer stops routing
    deliveries here while the worker pool drains.
    """
    if getattr(request.app.state, "shutting_down", False):
        return JSONResponse(
            status_code=503,
            content={"status": "shutting_down", "service": "tierlist-webhooks"},
        )
    return {"status": "healthy", "service": "tierlist-webhooks"}


@router.get("/ready")
async def readiness_check(request: Request):
    """Readiness check - verifies the database and the webhook worker pool."""
    checks = {"database": False, "worker_pool": False, "webhook_secret": False}
    engine = getattr(request.app.state, "engine", None)

    try:
        session_factory = request.app.state.session_factory
        async with session_factory() as session:
            await session.execute(text("SELECT 1"))
        checks["database"] = True
    except Exception as e:
        logger.error("readiness_database_failed", error=str(e))

    if engine is not None:
        checks["worker_pool"] = engine.pool.running
        checks["webhook_secret"] = engine.verifier is not None

    all_healthy = all(checks.values())
    status_code = 200 if all_healthy else 503

    return JSONResponse(
        status_code=status_code,
        content={"status": "ready" if all_healthy else "degraded", "checks": checks},
    )
