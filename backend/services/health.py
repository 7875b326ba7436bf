"""
Health check service for PMaaS.

Checks database connectivity and that the system roles are seeded, and
tracks uptime. Returns structured health responses with per-component status.
"""

import logging
import time
from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel
from sqlalchemy import select, text
from sqlalchemy.ext.asyncio import AsyncSession

from auth.permissions import APPLICATION_ROLES
from config import settings
from models import Role

logger = logging.getLogger(__name__)

# Captured at module load for uptime
_start_time = time.monotonic()


class ComponentHealth(BaseModel):
    name: str
    status: str  # "ok" | "degraded" | "error"
    message: Optional[str] = None
    response_time_ms: Optional[float] = None


class HealthResponse(BaseModel):
    status: str  # "healthy" | "degraded" | "unhealthy"
    app: str
    version: str
    uptime_seconds: float
    checks: list[ComponentHealth]
    timestamp: str


async def check_database(db: AsyncSession) -> ComponentHealth:
    """Check database connectivity by running SELECT 1."""
    start = time.perf_counter()
    try:
        await db.execute(text("SELECT 1"))
        elapsed = (time.perf_counter() - start) * 1000
        return ComponentHealth(
            name="database",
            status="ok",
            response_time_ms=round(elapsed, 1),
        )
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        elapsed = (time.perf_counter() - start) * 1000
        return ComponentHealth(
            name="database",
            status="error",
            message=str(e),
            response_time_ms=round(elapsed, 1),
        )


async def check_system_roles(db: AsyncSession) -> ComponentHealth:
    """Check that every system role exists."""
    try:
        result = await db.execute(select(Role.name))
        present = set(result.scalars().all())
    except Exception as e:
        return ComponentHealth(name="system_roles", status="error", message=str(e))

    missing = [name for name in APPLICATION_ROLES if name not in present]
    if missing:
        return ComponentHealth(
            name="system_roles",
            status="error",
            message=f"Missing roles: {', '.join(missing)}",
        )
    return ComponentHealth(name="system_roles", status="ok")


async def run_health_checks(db: AsyncSession) -> HealthResponse:
    """Run all health checks and return aggregated status."""
    checks = [
        await check_database(db),
        await check_system_roles(db),
    ]

    # Database is critical: if it is down the service is unhealthy.
    # Other failed checks only degrade the service.
    critical_names = {"database"}
    has_critical_error = any(
        c.status == "error" and c.name in critical_names for c in checks
    )
    has_any_error = any(c.status == "error" for c in checks)

    if has_critical_error:
        overall = "unhealthy"
    elif has_any_error:
        overall = "degraded"
    else:
        overall = "healthy"

    return HealthResponse(
        status=overall,
        app=settings.APP_NAME,
        version=settings.APP_VERSION,
        uptime_seconds=round(time.monotonic() - _start_time, 1),
        checks=checks,
        timestamp=datetime.now(timezone.utc).isoformat(),
    )
