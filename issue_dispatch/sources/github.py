"""GitHub issue adapter."""

from typing import Any, Dict, List, Optional

from issue_dispatch.exceptions import AdapterError
from issue_dispatch.models.common import Issue, SourceType
from .base import IssueSourceAdapter, label_names, parse_timestamp
from .heuristics import infer_priority, infer_type

# Edits and label changes to an issue already seen are not new work
HANDLED_ACTIONS = frozenset({'opened', 'reopened'})


class GitHubAdapter(IssueSourceAdapter):
    """Normalizes ``issues`` webhook events and polled issue lists."""

    source_type = SourceType.GITHUB

    def normalize(self, payload: Any) -> List[Issue]:
        if isinstance(payload, list):
            issues = []
            for item in payload:
                issue = self._convert(item, repository=None)
                if issue is not None:
                    issues.append(issue)
            return issues

        if not isinstance(payload, dict):
            raise AdapterError("GitHub payload must be an object or a list", source_type=self.source_type.value)

        if 'action' in payload:
            action = payload['action']
            if action not in HANDLED_ACTIONS:
                self.logger.debug(f"Ignoring GitHub issues action {action}")
                return []
            repository = (payload.get('repository') or {}).get('full_name')
            data = self._require(payload, 'issue')
            # Each reopening is a new event; the plain issue id is already seen
            event = f"reopened:{data.get('updated_at') or ''}" if action == 'reopened' else None
            issue = self._convert(data, repository, event)
        else:
            issue = self._convert(payload, repository=None)

        return [issue] if issue is not None else []

    def _convert(self, data: Dict[str, Any], repository: Optional[str],
                 event: Optional[str] = None) -> Optional[Issue]:
        if not isinstance(data, dict):
            raise AdapterError("GitHub issue must be an object", source_type=self.source_type.value)
        if data.get('pull_request'):
            return None

        number = self._require(data, 'number')
        repository = repository or self._repository_from_url(data.get('repository_url', ''))
        title = data.get('title') or ''
        body = data.get('body') or ''
        labels = label_names(data.get('labels'))
        provider_id = str(data.get('id') or f"{repository}#{number}")
        if event:
            provider_id = f"{provider_id}:{event}"

        return self._build({
            'id': f"github:{repository}#{number}" if repository else f"github:{number}",
            'provider_id': provider_id,
            'title': title,
            'body': body,
            'labels': labels,
            'repository': repository,
            'priority': infer_priority(labels, title, body),
            'type': infer_type(title, body, labels),
            'created_at': parse_timestamp(data.get('created_at')),
            'url': data.get('html_url'),
        }, raw_data=data)

    @staticmethod
    def _repository_from_url(url: str) -> Optional[str]:
        # https://api.github.com/repos/<owner>/<name>
        marker = '/repos/'
        if marker not in url:
            return None
        return url.split(marker, 1)[1].strip('/') or None
