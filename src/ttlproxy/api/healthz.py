"""
Health check endpoints.

- /healthz: Liveness probe (always 200 if service alive)
- /readyz: Readiness probe (200 only if sweeper running and outbound session open)
"""

from dataclasses import asdict
from datetime import datetime, timezone
from typing import Any, Dict

import structlog
from fastapi import APIRouter, Request, Response, status

from .. import __version__

logger = structlog.get_logger(__name__)

router = APIRouter()


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@router.get(
    "/healthz",
    status_code=200,
    summary="Liveness probe",
)
async def liveness_check() -> Dict[str, Any]:
    """
    Liveness probe - always returns 200 if service is alive.
    """
    return {
        "status": "alive",
        "timestamp": _now(),
        "service": "ttlproxy",
        "version": __version__,
    }


@router.get(
    "/readyz",
    summary="Readiness probe",
    description="""
    Readiness probe endpoint.

    Returns 200 only if:
    - The expiry sweeper loop is running
    - The outbound HTTP session is open
    - The store lock can be acquired

    Returns 503 Service Unavailable otherwise. A dead sweeper means expired
    entries are no longer purged, so the instance reports itself not ready.
    """,
)
async def readiness_check(request: Request, response: Response) -> Dict[str, Any]:
    """Readiness probe - 503 when a background component is down."""
    health_checker = getattr(request.app.state, "health_checker", None)

    if not health_checker:
        logger.warning("Health checker not initialized")
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return {
            "status": "not_ready",
            "reason": "health_checker_not_initialized",
            "timestamp": _now(),
        }

    health_status = await health_checker.check_all()
    checks = {name: asdict(check) for name, check in health_status.checks.items()}

    if health_status.is_healthy:
        response.status_code = status.HTTP_200_OK
        return {
            "status": "ready",
            "timestamp": _now(),
            "checks": checks,
        }

    logger.warning("Readiness check failed", failed_checks=health_status.failed_checks)
    response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    return {
        "status": "not_ready",
        "timestamp": _now(),
        "checks": checks,
        "failed_checks": health_status.failed_checks,
    }
