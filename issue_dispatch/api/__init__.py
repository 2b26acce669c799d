"""External API clients and the webhook receiver."""

from .base import BaseAPIClient, CircuitBreaker, CircuitOpenError, RateLimiter
from .github_client import GitHubAPIClient
from .jira_client import JiraAPIClient
from .sentry_client import SentryAPIClient

__all__ = [
    'BaseAPIClient',
    'CircuitBreaker',
    'CircuitOpenError',
    'RateLimiter',
    'GitHubAPIClient',
    'JiraAPIClient',
    'SentryAPIClient',
]
