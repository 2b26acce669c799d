"""Configuration management."""

from .settings import (
    SystemConfig,
    DatabaseConfig,
    APIConfig,
    SourceConfig,
    DispatchConfig,
    ScoringConfig,
    NotificationConfig,
    LoggingConfig,
    WebhookConfig,
    HealthConfig,
)

__all__ = [
    'SystemConfig',
    'DatabaseConfig',
    'APIConfig',
    'SourceConfig',
    'DispatchConfig',
    'ScoringConfig',
    'NotificationConfig',
    'LoggingConfig',
    'WebhookConfig',
    'HealthConfig',
]
