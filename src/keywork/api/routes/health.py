"""Health check endpoint.

Verifies connectivity to the database and Redis and reports how many
realtime rooms are open. Used by container healthchecks and load balancers.
"""

from __future__ import annotations

from fastapi import APIRouter, Request
from sqlalchemy import text

from keywork.infrastructure.database.engine import _get_engine
from keywork.infrastructure.redis_client import get_redis
from keywork.logging_config import get_logger
from keywork.schemas.health import HealthResponse

router = APIRouter(tags=["Health"])
logger = get_logger(__name__)


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Returns the health status of the application and its dependencies.",
)
async def health_check(request: Request) -> HealthResponse:
    db_status = "unknown"
    redis_status = "unknown"

    try:
        async with _get_engine().connect() as conn:
            await conn.execute(text("SELECT 1"))
        db_status = "healthy"
    except Exception as exc:
        db_status = f"unhealthy: {exc}"
        logger.error("health.db_check_failed", error=str(exc))

    redis = get_redis()
    if redis is None:
        redis_status = "disabled"
    else:
        try:
            await redis.ping()
            redis_status = "healthy"
        except Exception as exc:
            redis_status = f"unhealthy: {exc}"
            logger.error("health.redis_check_failed", error=str(exc))

    redis_ok = not redis_status.startswith("unhealthy")
    overall = "ok" if db_status == "healthy" and redis_ok else "degraded"

    rooms = getattr(request.app.state, "rooms", None)
    return HealthResponse(
        status=overall,
        version=request.app.version,
        database=db_status,
        redis=redis_status,
        rooms=len(rooms.topics) if rooms is not None else 0,
    )
