"""
Codelab Grader - Health Check Endpoints
Grading store, Redis, and sandbox scratch space monitoring
"""

import shutil
import tempfile
import time
from datetime import datetime, timezone
from typing import Any, Dict

import structlog
from fastapi import APIRouter, Request, status
from pydantic import BaseModel

logger = structlog.get_logger(__name__)

router = APIRouter()


class HealthStatus(BaseModel):
    """Health check response model."""
    status: str
    timestamp: str
    version: str
    checks: Dict[str, Any]


async def _timed(check) -> Dict[str, Any]:
    start = time.monotonic()
    result = await check()
    return {**result, "latency_ms": round((time.monotonic() - start) * 1000, 2)}


@router.get(
    "",
    response_model=HealthStatus,
    summary="Health Check",
    description="Health of the grading store, cache and sandbox scratch space",
)
async def health_check(request: Request) -> HealthStatus:
    state = request.app.state
    checks: Dict[str, Any] = {}
    overall_status = "healthy"

    checks["store"] = await _timed(state.store.health_check)
    if checks["store"]["status"] != "healthy":
        overall_status = "degraded"

    if getattr(state, "cache", None) is not None:
        checks["redis"] = await _timed(state.cache.health_check)
        if checks["redis"]["status"] != "healthy":
            overall_status = "degraded"

    checks["sandbox_scratch"] = check_scratch_space()
    if checks["sandbox_scratch"]["status"] != "healthy":
        overall_status = "degraded"

    return HealthStatus(
        status=overall_status,
        timestamp=datetime.now(timezone.utc).isoformat(),
        version=state.settings.app_version,
        checks=checks,
    )


@router.get(
    "/live",
    status_code=status.HTTP_200_OK,
    summary="Liveness Probe",
)
async def liveness() -> Dict[str, str]:
    return {"status": "alive"}


@router.get(
    "/ready",
    status_code=status.HTTP_200_OK,
    summary="Readiness Probe",
)
async def readiness(request: Request) -> Dict[str, str]:
    """Ready once the grading store answers; the cache is optional."""
    store_health = await request.app.state.store.health_check()
    if store_health["status"] != "healthy":
        return {"status": "not_ready", "reason": "store"}
    return {"status": "ready"}


def check_scratch_space(
    warning_threshold: float = 0.8,
    critical_threshold: float = 0.95,
) -> Dict[str, Any]:
    """
    Check free space where sandbox working directories are created.

    Args:
        warning_threshold: Warning threshold (0-1)
        critical_threshold: Critical threshold (0-1)
    """
    path = tempfile.gettempdir()
    try:
        total, used, free = shutil.disk_usage(path)
    except OSError as e:
        logger.error("Scratch space check failed", path=path, error=str(e))
        return {"status": "unhealthy", "path": path, "error": str(e)}

    usage_ratio = used / total if total else 1.0
    state = "healthy"
    if usage_ratio >= critical_threshold:
        state = "critical"
    elif usage_ratio >= warning_threshold:
        state = "warning"

    return {
        "status": state,
        "path": path,
        "free_gb": round(free / (1024**3), 2),
        "usage_percent": round(usage_ratio * 100, 1),
    }
