"""Sentry issue adapter."""

from typing import Any, Dict, List

from issue_dispatch.exceptions import AdapterError
from issue_dispatch.models.common import Issue, IssueType, Priority, SourceType
from .base import IssueSourceAdapter, parse_timestamp

LEVEL_PRIORITY = {
    'fatal': Priority.CRITICAL,
    'error': Priority.HIGH,
    'warning': Priority.MEDIUM,
}


class SentryAdapter(IssueSourceAdapter):
    """Normalizes Sentry alert webhooks and polled project issues.

    Every Sentry issue is a bug; its level decides the priority.
    """

    source_type = SourceType.SENTRY

    def normalize(self, payload: Any) -> List[Issue]:
        if isinstance(payload, list):
            return [self._convert(item) for item in payload]
        if not isinstance(payload, dict):
            raise AdapterError("Sentry payload must be an object or a list", source_type=self.source_type.value)

        data = payload.get('data')
        if isinstance(data, dict):
            item = data.get('issue') or data.get('event')
            if not isinstance(item, dict):
                raise AdapterError("Sentry webhook carries no issue or event", source_type=self.source_type.value)
            return [self._convert(item)]

        return [self._convert(payload)]

    def _convert(self, data: Dict[str, Any]) -> Issue:
        if not isinstance(data, dict):
            raise AdapterError("Sentry issue must be an object", source_type=self.source_type.value)

        provider_id = str(self._require(data, 'id') if 'id' in data else self._require(data, 'issue_id'))
        level = str(data.get('level') or '').lower()
        project = data.get('project')
        project_slug = project.get('slug') if isinstance(project, dict) else project

        body_parts = []
        if data.get('culprit'):
            body_parts.append(f"Culprit: {data['culprit']}")
        metadata = self._mapping(data, 'metadata')
        if metadata.get('value'):
            body_parts.append(str(metadata['value']))
        if data.get('count'):
            body_parts.append(f"Events: {data['count']}")

        labels = [f"level:{level}"] if level else []
        if level == 'fatal':
            labels.append('critical')

        return self._build({
            'id': f"sentry:{provider_id}",
            'provider_id': provider_id,
            'title': data.get('title') or metadata.get('title') or f"Sentry issue {provider_id}",
            'body': "\n".join(body_parts),
            'labels': labels,
            'repository': project_slug,
            'priority': LEVEL_PRIORITY.get(level, Priority.LOW),
            'type': IssueType.BUG,
            'created_at': parse_timestamp(data.get('firstSeen') or data.get('dateCreated')),
            'url': data.get('permalink') or data.get('web_url') or data.get('url'),
        }, raw_data=data)
