"""Issue source adapters, deduplication and polling."""

from .base import IssueSourceAdapter, label_names, parse_timestamp
from .github import GitHubAdapter
from .sentry import SentryAdapter
from .monitoring import MonitoringAdapter
from .jira import JiraAdapter
from .dedup import EventDeduplicator
from .poller import PollingSource, SourcePoller

__all__ = [
    'IssueSourceAdapter',
    'label_names',
    'parse_timestamp',
    'GitHubAdapter',
    'SentryAdapter',
    'MonitoringAdapter',
    'JiraAdapter',
    'EventDeduplicator',
    'PollingSource',
    'SourcePoller',
]
