"""
Health check endpoints.

- /healthz: liveness, 200 while the process serves requests
- /readyz: readiness, 200 only while the destination pool is open and every sink is ready
"""

import time
from typing import Any, Dict

import structlog
from fastapi import APIRouter, Request, Response, status

from .. import __version__
from ..core.health import HealthCheck

logger = structlog.get_logger(__name__)

router = APIRouter()


def _summarize(check: HealthCheck) -> Dict[str, Any]:
    return {"status": check.status, "message": check.message, **check.details}


@router.get("/healthz", summary="Liveness probe")
async def liveness_check() -> Dict[str, Any]:
    return {"status": "alive", "service": "telerelay", "version": __version__}


@router.get(
    "/readyz",
    summary="Readiness probe",
    description="503 until the relay has opened its destination pool and started every sink.",
)
async def readiness_check(request: Request, response: Response) -> Dict[str, Any]:
    health_checker = getattr(request.app.state, "health_checker", None)
    if health_checker is None:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return {"status": "not_ready", "reason": "relay_not_started", "timestamp": time.time()}

    health_status = await health_checker.check_all()
    checks = {name: _summarize(check) for name, check in health_status.checks.items()}

    if not health_status.is_healthy:
        logger.warning("Relay not ready", failed_checks=health_status.failed_checks)
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return {
            "status": "not_ready",
            "failed_checks": health_status.failed_checks,
            "checks": checks,
            "timestamp": health_status.timestamp,
        }

    return {"status": "ready", "checks": checks, "timestamp": health_status.timestamp}
