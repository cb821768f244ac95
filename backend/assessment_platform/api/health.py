"""Health checks and the Prometheus scrape endpoint."""

import time
from datetime import datetime, timezone

import redis.asyncio as aioredis
from fastapi import APIRouter
from fastapi.responses import Response
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from sqlalchemy import text

from assessment_platform.config import settings
from assessment_platform.database import engine

router = APIRouter(tags=["health"])

_health_cache: dict = {}
_health_cache_ts: float = 0.0
HEALTH_CACHE_TTL = 10.0  # seconds


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@router.get("/health")
async def liveness():
    """Process is up; does not touch the database."""
    return {
        "success": True,
        "status": "healthy",
        "timestamp": _now(),
        "version": "0.1.0",
        "environment": settings.environment,
    }


@router.get("/api/health")
async def readiness():
    """Database and Redis connectivity (cached for a few seconds)."""
    global _health_cache, _health_cache_ts

    now = time.time()
    if _health_cache and (now - _health_cache_ts) < HEALTH_CACHE_TTL:
        return _health_cache

    components: dict = {}

    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        components["database"] = {"status": "connected"}
    except Exception as exc:
        components["database"] = {"status": "disconnected", "error": str(exc)}

    try:
        r = aioredis.from_url(settings.redis_url, decode_responses=True)
        await r.ping()
        await r.aclose()
        components["redis"] = {"status": "connected"}
    except Exception as exc:
        components["redis"] = {"status": "disconnected", "error": str(exc)}

    db_ok = components["database"]["status"] == "connected"
    redis_ok = components["redis"]["status"] == "connected"
    if db_ok and redis_ok:
        overall = "healthy"
    elif not db_ok:
        overall = "unhealthy"
    else:
        overall = "degraded"

    result = {
        "success": db_ok,
        "status": overall,
        "timestamp": _now(),
        "components": components,
    }
    _health_cache = result
    _health_cache_ts = now
    return result


@router.get("/metrics")
async def prometheus_metrics():
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
