"""Health check server for container orchestration."""

import time
from datetime import datetime
from typing import Dict, List, Any, Optional, Callable
from dataclasses import dataclass, asdict
from enum import Enum
import logging

from fastapi import FastAPI, HTTPException
import uvicorn

from issue_dispatch.config.settings import HealthConfig
from issue_dispatch.models.common import utcnow


class HealthStatus(Enum):
    """Health check status enumeration."""
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    DEGRADED = "degraded"


@dataclass
class HealthCheck:
    """Individual health check result."""
    name: str
    status: HealthStatus
    message: str
    timestamp: datetime
    duration_ms: Optional[float] = None
    details: Optional[Dict[str, Any]] = None


@dataclass
class SystemHealth:
    """Overall system health status."""
    status: HealthStatus
    timestamp: datetime
    checks: List[HealthCheck]
    uptime_seconds: float
    version: str = "1.0.0"


def _serialize(data: Any) -> Any:
    if isinstance(data, Enum):
        return data.value
    if isinstance(data, datetime):
        return data.isoformat()
    if isinstance(data, dict):
        return {k: _serialize(v) for k, v in data.items()}
    if isinstance(data, list):
        return [_serialize(v) for v in data]
    return data


class HealthServer:
    """HTTP server for health and metrics endpoints.

    ``/health/ready`` answers 503 while any check is unhealthy; a degraded
    system (for example, a disabled source) is still ready.
    """

    def __init__(self, config: Optional[HealthConfig] = None,
                 metrics_provider: Optional[Callable[[], Dict[str, Any]]] = None):
        self.config = config or HealthConfig()
        self.metrics_provider = metrics_provider
        self.app = FastAPI(title="Issue Dispatch Health Check", version="1.0.0")
        self.logger = logging.getLogger(__name__)
        self.start_time = utcnow()
        self.health_checks: Dict[str, Callable[[], HealthCheck]] = {}
        self.server: Optional[uvicorn.Server] = None

        self._setup_routes()

    def _setup_routes(self):
        """Setup FastAPI routes for health checks."""

        @self.app.get("/health")
        async def health():
            """Main health check endpoint."""
            return self.perform_health_checks()

        @self.app.get("/health/live")
        async def liveness():
            return {"status": "alive", "timestamp": utcnow().isoformat()}

        @self.app.get("/health/ready")
        async def readiness():
            health_result = self.perform_health_checks()
            if health_result["status"] in ("healthy", "degraded"):
                return health_result
            raise HTTPException(status_code=503, detail=health_result)

        @self.app.get("/metrics")
        async def metrics():
            """Queue, job and source metrics."""
            data = {
                "uptime_seconds": (utcnow() - self.start_time).total_seconds(),
                "start_time": self.start_time.isoformat(),
                "timestamp": utcnow().isoformat(),
            }
            if self.metrics_provider is not None:
                data.update(self.metrics_provider())
            return _serialize(data)

    def add_health_check(self, name: str, check_func: Callable[[], HealthCheck]):
        """Add a health check function."""
        self.health_checks[name] = check_func
        self.logger.info(f"Added health check: {name}")

    def perform_health_checks(self) -> Dict[str, Any]:
        """Run all registered health checks."""
        checks = []
        overall_status = HealthStatus.HEALTHY

        for name, check_func in self.health_checks.items():
            try:
                started = time.monotonic()
                check_result = check_func()
                check_result.duration_ms = round((time.monotonic() - started) * 1000, 2)
            except Exception as e:
                self.logger.error(f"Health check {name} failed: {e}")
                check_result = HealthCheck(
                    name=name,
                    status=HealthStatus.UNHEALTHY,
                    message=f"Health check failed: {e}",
                    timestamp=utcnow()
                )
            checks.append(check_result)

            if check_result.status == HealthStatus.UNHEALTHY:
                overall_status = HealthStatus.UNHEALTHY
            elif check_result.status == HealthStatus.DEGRADED and overall_status == HealthStatus.HEALTHY:
                overall_status = HealthStatus.DEGRADED

        system_health = SystemHealth(
            status=overall_status,
            timestamp=utcnow(),
            checks=checks,
            uptime_seconds=(utcnow() - self.start_time).total_seconds()
        )
        return _serialize(asdict(system_health))

    async def serve(self):
        """Run the health check server on the current event loop."""
        config = uvicorn.Config(
            self.app,
            host=self.config.host,
            port=self.config.port,
            log_level="info",
            access_log=False
        )
        self.server = uvicorn.Server(config)
        self.logger.info(f"Starting health check server on {self.config.host}:{self.config.port}")
        await self.server.serve()

    def stop(self) -> None:
        if self.server is not None:
            self.server.should_exit = True
