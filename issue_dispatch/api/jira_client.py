"""Jira API client for polling and commenting on issues."""

import base64
import logging
from typing import Any, Dict, List, Optional
from datetime import datetime
import requests
from jira import JIRA, JIRAError

from .base import BaseAPIClient, RateLimitConfig, CircuitBreakerConfig


class JiraAPIClient(BaseAPIClient):
    """Jira API client with authentication and rate limiting."""

    def __init__(
        self,
        server_url: str,
        username: str,
        api_token: str,
        rate_limit_requests: int = 100,
        rate_limit_window: int = 3600,
        timeout: int = 30
    ):
        """Initialize Jira API client.

        Args:
            server_url: Jira server URL (e.g., https://company.atlassian.net)
            username: Jira username/email
            api_token: Jira API token
            rate_limit_requests: Requests per window
            rate_limit_window: Rate limit window in seconds
        """
        self.server_url = server_url.rstrip('/')
        self.username = username
        self.api_token = api_token

        super().__init__(
            base_url=f"{self.server_url}/rest/api/2",
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
        self._jira: Optional[JIRA] = None

    @property
    def jira(self) -> JIRA:
        """Lazily connected JIRA library client."""
        if self._jira is None:
            self._jira = JIRA(
                server=self.server_url,
                basic_auth=(self.username, self.api_token),
                timeout=self.timeout,
            )
        return self._jira

    def authenticate(self) -> Dict[str, str]:
        credentials = f"{self.username}:{self.api_token}"
        encoded_credentials = base64.b64encode(credentials.encode()).decode()

        return {
            "Authorization": f"Basic {encoded_credentials}",
            "Accept": "application/json",
            "Content-Type": "application/json"
        }

    def list_issues_since(self, project_key: str, since: Optional[datetime] = None,
                          max_results: int = 100) -> List[Dict[str, Any]]:
        """List issues of a project updated since the watermark.

        Returns the REST representation of each issue so the webhook and
        polling paths share one adapter.
        """
        jql = f'project = "{project_key}"'
        if since:
            jql += f' AND updated >= "{since.strftime("%Y-%m-%d %H:%M")}"'
        jql += " ORDER BY updated ASC"

        issues = self.jira.search_issues(jql, maxResults=max_results)
        result = []
        for issue in issues:
            data = dict(issue.raw)
            data.setdefault('self_url', f"{self.server_url}/browse/{issue.key}")
            result.append(data)

        self.logger.info(f"Retrieved {len(result)} issues from project {project_key}")
        return result

    def add_comment(self, issue_key: str, comment: str) -> bool:
        try:
            self.jira.add_comment(issue_key, comment)
            self.logger.info(f"Added comment to issue {issue_key}")
            return True
        except JIRAError as e:
            self.logger.error(f"Failed to add comment to issue {issue_key}: {e}")
            return False
