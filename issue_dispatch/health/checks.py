"""Health check implementations for the pipeline's components."""

import time

from issue_dispatch.models.common import utcnow
from .health_server import HealthCheck, HealthStatus


class DatabaseHealthCheck:
    """Health check for database connectivity."""

    def __init__(self, db_manager, slow_threshold: float = 5.0):
        self.db_manager = db_manager
        self.slow_threshold = slow_threshold

    def __call__(self) -> HealthCheck:
        start_time = time.monotonic()
        if not self.db_manager.health_check():
            return HealthCheck(
                name="database",
                status=HealthStatus.UNHEALTHY,
                message="Database connection failed",
                timestamp=utcnow()
            )

        query_time = time.monotonic() - start_time
        if query_time > self.slow_threshold:
            return HealthCheck(
                name="database",
                status=HealthStatus.DEGRADED,
                message=f"Database responding slowly ({query_time:.2f}s)",
                timestamp=utcnow(),
                details={"query_time_seconds": query_time}
            )
        return HealthCheck(
            name="database",
            status=HealthStatus.HEALTHY,
            message="Database connection healthy",
            timestamp=utcnow(),
            details={"query_time_seconds": query_time}
        )


class DispatcherHealthCheck:
    """Reports queue depth and running jobs; unhealthy once the loop stops."""

    def __init__(self, dispatcher):
        self.dispatcher = dispatcher

    def __call__(self) -> HealthCheck:
        status = self.dispatcher.status()
        details = {
            "queue_depth": status["queue_depth"],
            "active_jobs": status["active_jobs"],
            "available_slots": status["available_slots"],
            "pending_approvals": status["pending_approvals"],
        }
        if not status["running"]:
            return HealthCheck(
                name="dispatcher",
                status=HealthStatus.UNHEALTHY,
                message="Dispatcher loop is not running",
                timestamp=utcnow(),
                details=details
            )
        return HealthCheck(
            name="dispatcher",
            status=HealthStatus.HEALTHY,
            message=f"{details['active_jobs']} jobs running, {details['queue_depth']} waiting",
            timestamp=utcnow(),
            details=details
        )


class SourcesHealthCheck:
    """Degraded while any polling source is disabled."""

    def __init__(self, poller):
        self.poller = poller

    def __call__(self) -> HealthCheck:
        sources = self.poller.status()
        disabled = [source["name"] for source in sources if not source["enabled"]]
        if disabled:
            return HealthCheck(
                name="sources",
                status=HealthStatus.DEGRADED,
                message=f"Disabled sources: {', '.join(disabled)}",
                timestamp=utcnow(),
                details={"sources": sources}
            )
        return HealthCheck(
            name="sources",
            status=HealthStatus.HEALTHY,
            message=f"{len(sources)} sources enabled",
            timestamp=utcnow(),
            details={"sources": sources}
        )
