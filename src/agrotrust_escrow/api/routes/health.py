"""Health check endpoint.

Verifies connectivity to the database and Redis, returns structured status.
Used by Docker healthchecks, load balancers, and monitoring systems.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from redis.exceptions import RedisError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from agrotrust_escrow.api.deps import get_app_settings
from agrotrust_escrow.config import Settings
from agrotrust_escrow.infrastructure.database.engine import get_engine
from agrotrust_escrow.infrastructure.redis_client import get_redis
from agrotrust_escrow.logging_config import get_logger
from agrotrust_escrow.schemas.escrow import HealthResponse

router = APIRouter(tags=["Health"])
logger = get_logger(__name__)


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Returns the health status of the application and its dependencies.",
)
async def health_check(settings: Settings = Depends(get_app_settings)) -> HealthResponse:
    """Check connectivity to the database and Redis.

    Redis only backs optional init idempotency, so a missing Redis does not
    degrade the service.
    """
    db_status = "unknown"
    redis_status = "disabled"

    try:
        async with get_engine().connect() as conn:
            await conn.execute(text("SELECT 1"))
        db_status = "healthy"
    except (SQLAlchemyError, OSError) as exc:
        db_status = f"unhealthy: {exc}"
        logger.error("health.db_check_failed", error=str(exc))

    redis = get_redis()
    if redis is not None:
        try:
            await redis.ping()
            redis_status = "healthy"
        except (RedisError, OSError) as exc:
            redis_status = f"unhealthy: {exc}"
            logger.error("health.redis_check_failed", error=str(exc))

    overall = "ok" if db_status == "healthy" and not redis_status.startswith("unhealthy") else "degraded"

    return HealthResponse(
        status=overall,
        version="0.1.0",
        database=db_status,
        redis=redis_status,
        payment_provider=settings.payment_provider,
    )
