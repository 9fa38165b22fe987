"""Health check endpoints.

Provides:
- Basic liveness probe (/health)
- Deep dependency check (/health/health)
- Detailed system status (/health/status)
"""

import logging
import platform
import sys
import time
from datetime import datetime, timezone
from typing import Any

import redis.asyncio as aioredis
from fastapi import APIRouter, HTTPException, status
from sqlalchemy import text

from actions.registry import get_action_registry
from app.config import get_settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/health", tags=["health"])

_start_time = time.monotonic()
_start_datetime = datetime.now(timezone.utc).isoformat()


@router.get("", response_model=dict[str, Any])
async def root() -> dict[str, Any]:
    """
    Get API root information and version.
    Used as a simple liveness probe.
    """
    settings = get_settings()
    return {
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "status": "ok",
    }


@router.get("/health", response_model=dict[str, Any])
async def health_check() -> dict[str, Any]:
    """
    Health check with dependency verification.
    Pings database and Redis to verify connectivity.
    Returns 503 if the database is down.
    """
    settings = get_settings()
    checks: dict[str, str] = {}

    # Database check
    try:
        from db.database import engine

        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        checks["database"] = "ok"
    except Exception as e:
        logger.error("Database health check failed: %s", e)
        checks["database"] = "unavailable"

    # Redis check (broker and, with LEASE_BACKEND=redis, execution leases)
    client = aioredis.from_url(
        settings.REDIS_URL,
        decode_responses=True,
        socket_connect_timeout=2,
        socket_timeout=2,
    )
    try:
        await client.ping()
        checks["redis"] = "ok"
    except Exception as e:
        logger.warning("Redis health check failed: %s", e)
        checks["redis"] = "unavailable"
    finally:
        await client.aclose()

    if checks["database"] == "unavailable":
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"status": "unhealthy", "checks": checks},
        )

    return {"status": "healthy", **checks}


@router.get("/status", response_model=dict[str, Any])
async def system_status() -> dict[str, Any]:
    """
    Detailed system status including uptime, versions and engine limits.
    Intended for admin dashboards and monitoring.
    """
    settings = get_settings()
    uptime_seconds = time.monotonic() - _start_time
    hours, remainder = divmod(int(uptime_seconds), 3600)
    minutes, seconds = divmod(remainder, 60)

    return {
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "started_at": _start_datetime,
        "uptime": f"{hours}h {minutes}m {seconds}s",
        "python": sys.version.split()[0],
        "platform": platform.platform(),
        "engine": {
            "action_types": len(get_action_registry()),
            "inline_delay_threshold_seconds": settings.INLINE_DELAY_THRESHOLD_SECONDS,
            "node_timeout_seconds": settings.NODE_TIMEOUT_SECONDS,
            "max_node_visits": settings.MAX_NODE_VISITS,
            "lease_backend": settings.LEASE_BACKEND,
        },
    }
