"""Sentry API client for polling project issues."""

import logging
from typing import Any, Dict, List, Optional
from datetime import datetime
import requests

from .base import BaseAPIClient, RateLimitConfig, CircuitBreakerConfig


class SentryAPIClient(BaseAPIClient):
    """Sentry REST client using a bearer auth token."""

    def __init__(self, token: str, organization: str, project: str,
                 base_url: str = "https://sentry.io/api/0",
                 rate_limit_requests: int = 1000, rate_limit_window: int = 3600,
                 timeout: int = 30):
        """Initialize Sentry API client.

        Args:
            token: Sentry auth token with ``project:read`` scope
            organization: Organization slug
            project: Project slug
            base_url: API root, for self-hosted Sentry
        """
        self.token = token
        self.organization = organization
        self.project = project

        super().__init__(
            base_url=base_url,
            rate_limit_config=RateLimitConfig(
                requests_per_window=rate_limit_requests,
                window_seconds=rate_limit_window,
            ),
            circuit_breaker_config=CircuitBreakerConfig(
                failure_threshold=3,
                recovery_timeout=180,
                expected_exception=requests.RequestException
            ),
            timeout=timeout
        )
        self.logger = logging.getLogger(__name__)

    def authenticate(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.token}",
            "Accept": "application/json",
        }

    def list_issues_since(self, since: Optional[datetime] = None, max_results: int = 100) -> List[Dict[str, Any]]:
        """List unresolved issues seen after ``since``."""
        query = "is:unresolved"
        if since:
            query += f" lastSeen:>{since.strftime('%Y-%m-%dT%H:%M:%S')}"

        response = self.get(
            f"/projects/{self.organization}/{self.project}/issues/",
            params={"query": query, "limit": max_results, "sort": "date"},
        )
        issues = response.json()
        self.logger.info(f"Retrieved {len(issues)} issues from Sentry project {self.project}")
        return issues
