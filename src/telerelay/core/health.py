"""
Health checker implementation for monitoring relay dependencies.

Performs health checks for:
- Relay service status (destination connection pool open)
- Sink readiness (every sink started)
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import structlog

from .relay_service import RelayService

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
    """
    Health checker for TeleRelay dependencies.

    Monitors:
    - Relay service (running, destination transport open)
    - Sinks (each reports ready)
    """

    def __init__(self, relay_service: Optional[RelayService] = None):
        self.relay_service = relay_service
        logger.info("Health Checker initialized")

    async def check_all(self) -> HealthStatus:
        """Perform all health checks and return overall status."""
        checks = {}
        failed_checks = []

        check_results = await asyncio.gather(
            asyncio.to_thread(self._check_relay_service),
            asyncio.to_thread(self._check_sinks),
            return_exceptions=True
        )

        check_names = ["relay", "sinks"]
        for name, result in zip(check_names, check_results):
            if isinstance(result, Exception):
                checks[name] = HealthCheck(
                    name=name,
                    status="unhealthy",
                    message=f"Check failed: {str(result)}",
                    details={"error": str(result), "error_type": type(result).__name__},
                    last_check=time.time()
                )
                failed_checks.append(name)
            elif isinstance(result, HealthCheck):
                checks[name] = result
                if result.status != "healthy":
                    failed_checks.append(name)

        return HealthStatus(
            is_healthy=len(failed_checks) == 0,
            checks=checks,
            failed_checks=failed_checks,
            timestamp=time.time()
        )

    def _check_relay_service(self) -> HealthCheck:
        """Check the relay service is running with an open destination pool."""
        if not self.relay_service:
            return HealthCheck(
                name="relay",
                status="unhealthy",
                message="Relay service not available",
                details={},
                last_check=time.time()
            )

        engine = self.relay_service.engine
        details = {
            "destination_uri": engine.destination_uri,
            "transport_open": engine.transport.is_open,
        }

        if self.relay_service.is_healthy():
            return HealthCheck(
                name="relay",
                status="healthy",
                message="Relay service is running",
                details=details,
                last_check=time.time()
            )
        return HealthCheck(
            name="relay",
            status="unhealthy",
            message="Relay service is not running",
            details=details,
            last_check=time.time()
        )

    def _check_sinks(self) -> HealthCheck:
        """Check every registered sink is ready."""
        if not self.relay_service:
            return HealthCheck(
                name="sinks",
                status="unhealthy",
                message="Relay service not available",
                details={},
                last_check=time.time()
            )

        readiness = {sink.name: sink.is_ready for sink in self.relay_service.sinks}
        not_ready = [name for name, ready in readiness.items() if not ready]

        if not_ready:
            return HealthCheck(
                name="sinks",
                status="unhealthy",
                message=f"Sinks not ready: {', '.join(not_ready)}",
                details={"sinks": readiness},
                last_check=time.time()
            )
        return HealthCheck(
            name="sinks",
            status="healthy",
            message=f"{len(readiness)} sink(s) ready",
            details={"sinks": readiness},
            last_check=time.time()
        )
