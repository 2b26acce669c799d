"""Health and metrics endpoints."""

from .health_server import HealthCheck, HealthServer, HealthStatus, SystemHealth
from .checks import DatabaseHealthCheck, DispatcherHealthCheck, SourcesHealthCheck

__all__ = [
    'HealthCheck',
    'HealthServer',
    'HealthStatus',
    'SystemHealth',
    'DatabaseHealthCheck',
    'DispatcherHealthCheck',
    'SourcesHealthCheck',
]
