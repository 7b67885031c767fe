"""Health check endpoint.

Verifies connectivity to PostgreSQL and Redis and reports which chain
gateway is active. Used by Docker healthchecks and load balancers.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy import text

from streampay_escrow.api.deps import get_app_settings
from streampay_escrow.config import Settings  # noqa: TC001
from streampay_escrow.logging_config import get_logger
from streampay_escrow.schemas.escrow import HealthResponse

router = APIRouter(tags=["Health"])
logger = get_logger(__name__)


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Returns the health status of the application and its dependencies.",
)
async def health_check(settings: Settings = Depends(get_app_settings)) -> HealthResponse:
    """Check connectivity to PostgreSQL and, when configured, Redis."""
    db_status = "unknown"
    redis_status = "disabled"

    # Check PostgreSQL
    try:
        from streampay_escrow.infrastructure.database.engine import get_engine

        async with get_engine().connect() as conn:
            await conn.execute(text("SELECT 1"))
        db_status = "healthy"
    except Exception as exc:
        db_status = f"unhealthy: {exc}"
        logger.error("health.db_check_failed", error=str(exc))

    # Check Redis
    if settings.redis_url:
        try:
            from streampay_escrow.infrastructure.redis_client import get_redis

            await get_redis().ping()
            redis_status = "healthy"
        except Exception as exc:
            redis_status = f"unhealthy: {exc}"
            logger.error("health.redis_check_failed", error=str(exc))

    healthy = db_status == "healthy" and redis_status in ("healthy", "disabled")

    return HealthResponse(
        status="ok" if healthy else "degraded",
        version="0.1.0",
        database=db_status,
        redis=redis_status,
        chain="simulated" if settings.chain_simulate else settings.stellar_network,
    )
