"""GitHub API client for the narrow calls the pipeline makes."""

import logging
from typing import Any, Dict, List, Optional
from datetime import datetime
import requests
from github import Auth, Github, GithubException
from github.Repository import Repository

from .base import BaseAPIClient, RateLimitConfig, CircuitBreakerConfig


class GitHubAPIClient(BaseAPIClient):
    """GitHub API client with authentication and rate limiting.

    Issue listings are returned as the REST API's JSON objects so the same
    adapter code normalizes polled issues and webhook payloads.
    """

    def __init__(self, token: str, rate_limit_requests: int = 5000, rate_limit_window: int = 3600,
                 timeout: int = 30):
        """Initialize GitHub API client.

        Args:
            token: GitHub personal access token
            rate_limit_requests: Requests per window (GitHub allows 5000/hour)
            rate_limit_window: Rate limit window in seconds
            timeout: Request timeout in seconds
        """
        self.token = token

        super().__init__(
            base_url="https://api.github.com",
            rate_limit_config=RateLimitConfig(
                requests_per_window=rate_limit_requests,
                window_seconds=rate_limit_window,
            ),
            circuit_breaker_config=CircuitBreakerConfig(
                failure_threshold=5,
                recovery_timeout=300,
                expected_exception=requests.RequestException
            ),
            timeout=timeout
        )

        self.github = Github(auth=Auth.Token(token), timeout=timeout)
        self.logger = logging.getLogger(__name__)
        self._repositories: Dict[str, Repository] = {}

    def authenticate(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.token}",
            "Accept": "application/vnd.github+json",
            "User-Agent": "issue-dispatch/1.0"
        }

    def get_repository(self, full_name: str) -> Repository:
        """Get (and cache) a repository object by ``owner/name``."""
        repository = self._repositories.get(full_name)
        if repository is None:
            try:
                repository = self.github.get_repo(full_name)
            except GithubException as e:
                self.logger.error(f"Failed to get repository {full_name}: {e}")
                raise
            self._repositories[full_name] = repository
        return repository

    def list_issues_since(self, full_name: str, since: Optional[datetime] = None,
                          max_results: int = 100) -> List[Dict[str, Any]]:
        """List open issues updated after ``since``, oldest first.

        Pull requests are skipped.
        """
        repository = self.get_repository(full_name)
        kwargs = {"state": "open", "sort": "updated", "direction": "asc"}
        if since:
            kwargs["since"] = since

        result = []
        for issue in repository.get_issues(**kwargs):
            if issue.pull_request:
                continue
            result.append(issue.raw_data)
            if len(result) >= max_results:
                break

        self.logger.info(f"Retrieved {len(result)} issues from {full_name}")
        return result

    def add_comment(self, full_name: str, issue_number: int, comment: str) -> bool:
        """Add comment to an issue."""
        try:
            issue = self.get_repository(full_name).get_issue(issue_number)
            issue.create_comment(comment)
            self.logger.info(f"Added comment to issue {full_name}#{issue_number}")
            return True
        except GithubException as e:
            self.logger.error(f"Failed to add comment to issue {full_name}#{issue_number}: {e}")
            return False

    def assign_issue(self, full_name: str, issue_number: int, assignees: List[str]) -> bool:
        try:
            issue = self.get_repository(full_name).get_issue(issue_number)
            issue.add_to_assignees(*assignees)
            self.logger.info(f"Assigned issue {full_name}#{issue_number} to {assignees}")
            return True
        except GithubException as e:
            self.logger.error(f"Failed to assign issue {full_name}#{issue_number}: {e}")
            return False

    def add_labels(self, full_name: str, issue_number: int, labels: List[str]) -> bool:
        try:
            issue = self.get_repository(full_name).get_issue(issue_number)
            issue.add_to_labels(*labels)
            self.logger.info(f"Added labels {labels} to issue {full_name}#{issue_number}")
            return True
        except GithubException as e:
            self.logger.error(f"Failed to add labels to issue {full_name}#{issue_number}: {e}")
            return False

    def create_pull_request(self, full_name: str, head: str, title: str, body: str,
                            base: Optional[str] = None, draft: bool = False) -> Dict[str, Any]:
        """Open a pull request from ``head`` into ``base`` (default branch if omitted).

        Raises:
            GithubException: If GitHub refuses the pull request
        """
        repository = self.get_repository(full_name)
        pull = repository.create_pull(
            title=title,
            body=body,
            head=head,
            base=base or repository.default_branch,
            draft=draft,
        )
        self.logger.info(f"Opened pull request {full_name}#{pull.number} from {head}")
        return {"number": pull.number, "url": pull.html_url}
