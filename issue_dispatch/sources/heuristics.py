"""Priority and type inference shared by the source adapters."""

import re
from typing import Iterable, Optional

from issue_dispatch.models.common import IssueType, Priority


PRIORITY_LABELS = (
    (Priority.CRITICAL, ('critical', 'p0', 'urgent', 'priority: critical', 'blocker')),
    (Priority.HIGH, ('high', 'p1', 'priority: high')),
    (Priority.LOW, ('low', 'p3', 'priority: low', 'minor')),
    (Priority.MEDIUM, ('medium', 'p2', 'priority: medium')),
)
HIGH_PRIORITY_TEXT = re.compile(r'\b(crash(es|ed|ing)?|outage|data loss|down for all)\b', re.IGNORECASE)

TYPE_LABELS = (
    (IssueType.BUG, ('bug', 'defect', 'regression')),
    (IssueType.FEATURE, ('enhancement', 'feature', 'feature request')),
    (IssueType.DOCUMENTATION, ('documentation', 'docs')),
    (IssueType.TESTING, ('test', 'testing', 'tests')),
)
# Order matters: "fix typo in README" is documentation, not a bug
TYPE_TEXT = (
    (IssueType.DOCUMENTATION, re.compile(
        r'\b(readme|docs?|documentation|docstring|changelog|typo|spelling)\b', re.IGNORECASE)),
    (IssueType.TESTING, re.compile(
        r'\b(tests?|testing|coverage|flaky)\b', re.IGNORECASE)),
    (IssueType.BUG, re.compile(
        r'\b(bug|crash\w*|error|exception|broken|fails?|failing|incorrect|wrong|null)\b', re.IGNORECASE)),
    (IssueType.FEATURE, re.compile(
        r'\b(feature|add support|support for|implement|enhancement|new option)\b', re.IGNORECASE)),
)


def _normalize(labels: Optional[Iterable[str]]) -> set:
    return {label.strip().lower() for label in (labels or ()) if label and label.strip()}


def infer_priority(labels: Optional[Iterable[str]], title: str = '', body: str = '') -> Priority:
    """Infer priority from labels first, then from text.

    Args:
        labels: Issue labels as given by the source
        title: Issue title
        body: Issue body

    Returns:
        Inferred priority, medium when nothing points elsewhere
    """
    normalized = _normalize(labels)
    for priority, names in PRIORITY_LABELS:
        if normalized & set(names):
            return priority

    if HIGH_PRIORITY_TEXT.search(f"{title}\n{body or ''}"):
        return Priority.HIGH

    return Priority.MEDIUM


def infer_type(title: str, body: str = '', labels: Optional[Iterable[str]] = None) -> IssueType:
    """Infer the issue type from labels first, then from text."""
    normalized = _normalize(labels)
    for issue_type, names in TYPE_LABELS:
        if normalized & set(names):
            return issue_type

    # Title is more telling than body, so it gets a pass of its own first
    for text in (title, f"{title}\n{body or ''}"):
        for issue_type, pattern in TYPE_TEXT:
            if pattern.search(text):
                return issue_type

    return IssueType.GENERAL
