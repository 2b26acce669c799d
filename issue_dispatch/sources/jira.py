"""Jira issue adapter."""

from typing import Any, Dict, List

from issue_dispatch.exceptions import AdapterError
from issue_dispatch.models.common import Issue, IssueType, Priority, SourceType
from .base import IssueSourceAdapter, parse_timestamp
from .heuristics import infer_priority, infer_type

PRIORITY_NAMES = {
    'blocker': Priority.CRITICAL,
    'highest': Priority.CRITICAL,
    'critical': Priority.CRITICAL,
    'high': Priority.HIGH,
    'major': Priority.HIGH,
    'medium': Priority.MEDIUM,
    'low': Priority.LOW,
    'minor': Priority.LOW,
    'lowest': Priority.LOW,
    'trivial': Priority.LOW,
}

ISSUE_TYPE_NAMES = {
    'bug': IssueType.BUG,
    'defect': IssueType.BUG,
    'story': IssueType.FEATURE,
    'new feature': IssueType.FEATURE,
    'improvement': IssueType.FEATURE,
    'documentation': IssueType.DOCUMENTATION,
    'test': IssueType.TESTING,
}


class JiraAdapter(IssueSourceAdapter):
    """Normalizes ``jira:issue_created`` webhooks and polled issues."""

    source_type = SourceType.JIRA

    def normalize(self, payload: Any) -> List[Issue]:
        if isinstance(payload, list):
            return [self._convert(item) for item in payload]
        if not isinstance(payload, dict):
            raise AdapterError("Jira payload must be an object or a list", source_type=self.source_type.value)

        if 'webhookEvent' in payload:
            if payload['webhookEvent'] != 'jira:issue_created':
                self.logger.debug(f"Ignoring Jira event {payload['webhookEvent']}")
                return []
            return [self._convert(self._require(payload, 'issue'))]

        return [self._convert(payload)]

    def _convert(self, data: Dict[str, Any]) -> Issue:
        key = self._require(data, 'key')
        fields = data.get('fields') or {}
        title = fields.get('summary') or ''
        body = fields.get('description') or ''
        if not isinstance(body, str):
            # Cloud API v3 returns rich-text documents
            body = ''
        labels = [str(label) for label in fields.get('labels') or []]

        priority_name = str((fields.get('priority') or {}).get('name') or '').lower()
        priority = PRIORITY_NAMES.get(priority_name) or infer_priority(labels, title, body)
        type_name = str((fields.get('issuetype') or {}).get('name') or '').lower()
        issue_type = ISSUE_TYPE_NAMES.get(type_name) or infer_type(title, body, labels)

        project = (fields.get('project') or {}).get('key') or key.split('-')[0]
        url = data.get('self_url')
        if not url and data.get('self') and '/rest/' in data['self']:
            url = f"{data['self'].split('/rest/')[0]}/browse/{key}"

        return self._build({
            'id': f"jira:{key}",
            'provider_id': key,
            'title': title,
            'body': body,
            'labels': labels,
            'repository': project,
            'priority': priority,
            'type': issue_type,
            'created_at': parse_timestamp(fields.get('created')),
            'url': url,
        }, raw_data=data)
