"""
Health checker for the proxy's background components.

Checks:
- Expiry sweeper loop alive
- Outbound HTTP session open
- Store lock responsive
"""

import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import structlog

from .forwarder import ProxyForwarder
from .store import ProxyStore
from .sweeper import ExpirySweeper

logger = structlog.get_logger(__name__)


@dataclass
class HealthCheck:
    """Individual health check result."""
    name: str
    status: str  # "healthy", "unhealthy"
    message: str
    details: Dict[str, Any]
    last_check: float


@dataclass
class HealthStatus:
    """Overall health status."""
    is_healthy: bool
    checks: Dict[str, HealthCheck]
    failed_checks: List[str]
    timestamp: float


class HealthChecker:
    """Aggregates readiness of the sweeper, forwarder and store."""

    def __init__(
        self,
        store: ProxyStore,
        sweeper: Optional[ExpirySweeper] = None,
        forwarder: Optional[ProxyForwarder] = None,
    ) -> None:
        self.store = store
        self.sweeper = sweeper
        self.forwarder = forwarder

    async def check_all(self) -> HealthStatus:
        """Perform all health checks and return overall status."""
        checks = {
            "sweeper": self._check_sweeper(),
            "forwarder": self._check_forwarder(),
            "store": await self._check_store(),
        }
        failed_checks = [name for name, check in checks.items() if check.status != "healthy"]

        return HealthStatus(
            is_healthy=not failed_checks,
            checks=checks,
            failed_checks=failed_checks,
            timestamp=time.time(),
        )

    def _check_sweeper(self) -> HealthCheck:
        if self.sweeper is None:
            return HealthCheck("sweeper", "unhealthy", "Expiry sweeper not available", {}, time.time())

        details = self.sweeper.status()
        if self.sweeper.is_healthy():
            return HealthCheck("sweeper", "healthy", "Expiry sweeper is running", details, time.time())
        return HealthCheck("sweeper", "unhealthy", "Expiry sweeper is not running", details, time.time())

    def _check_forwarder(self) -> HealthCheck:
        if self.forwarder is None or not self.forwarder.is_healthy():
            return HealthCheck("forwarder", "unhealthy", "Outbound session is not open", {}, time.time())
        return HealthCheck("forwarder", "healthy", "Outbound session is open", {}, time.time())

    async def _check_store(self) -> HealthCheck:
        try:
            entries = await self.store.count()
        except Exception as e:
            logger.warning("Store health check failed", error=str(e))
            return HealthCheck(
                "store",
                "unhealthy",
                "Store lock unavailable",
                {"error_type": type(e).__name__},
                time.time(),
            )
        return HealthCheck("store", "healthy", "Store is responsive", {"entries": entries}, time.time())
