"""
Health Check Endpoints

Provides health and readiness checks for orchestration systems, and the
Prometheus scrape endpoint.
"""

from datetime import datetime
from typing import Dict, Any

from fastapi import APIRouter, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from pydantic import BaseModel
from redis.exceptions import RedisError

from gear_popularity.config import get_settings
from gear_popularity.database.connection import check_database_health
from gear_popularity.popularity.scoring import utcnow
from gear_popularity.serving.cache import get_redis, is_redis_ready

settings = get_settings()
router = APIRouter()


class HealthResponse(BaseModel):
    """Health check response"""
    status: str
    version: str
    environment: str
    timestamp: datetime
    checks: Dict[str, Any]


async def _redis_health() -> Dict[str, Any]:
    if not settings.redis.enabled:
        return {"status": "disabled"}
    if not is_redis_ready():
        return {"status": "unhealthy", "error": "not initialized"}
    try:
        await get_redis().ping()
    except RedisError as e:
        return {"status": "unhealthy", "error": str(e)}
    return {"status": "healthy"}


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """
    Comprehensive health check endpoint.

    Checks:
    - Database connectivity
    - Redis connectivity (the trending cache is optional, so only degrades)
    """
    checks = {}
    overall_status = "healthy"

    db_health = await check_database_health()
    checks["database"] = db_health
    if db_health.get("status") != "healthy":
        overall_status = "unhealthy"

    checks["redis"] = await _redis_health()
    if checks["redis"]["status"] == "unhealthy" and overall_status == "healthy":
        overall_status = "degraded"

    return HealthResponse(
        status=overall_status,
        version=settings.version,
        environment=settings.app_env,
        timestamp=utcnow(),
        checks=checks,
    )


@router.get("/health/live")
async def liveness_check() -> Dict[str, str]:
    """
    Kubernetes liveness probe endpoint.

    Returns 200 if the application is running.
    """
    return {"status": "alive"}


@router.get("/health/ready")
async def readiness_check(response: Response) -> Dict[str, str]:
    """
    Kubernetes readiness probe endpoint.

    Returns 200 when the database accepts queries.
    """
    db_health = await check_database_health()

    if db_health.get("status") != "healthy":
        response.status_code = 503
        return {"status": "not_ready", "reason": "database_unavailable"}

    return {"status": "ready"}


@router.get("/metrics", include_in_schema=False)
async def metrics() -> Response:
    """Prometheus exposition of recorder and rollup metrics"""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
