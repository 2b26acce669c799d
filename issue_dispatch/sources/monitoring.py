"""Adapter for Alertmanager-style monitoring alerts."""

from typing import Any, Dict, List, Optional

from issue_dispatch.exceptions import AdapterError
from issue_dispatch.models.common import Issue, IssueType, Priority, SourceType
from .base import IssueSourceAdapter, parse_timestamp

SEVERITY_PRIORITY = {
    'critical': Priority.CRITICAL,
    'page': Priority.CRITICAL,
    'high': Priority.HIGH,
    'error': Priority.HIGH,
    'warning': Priority.MEDIUM,
    'info': Priority.LOW,
}


class MonitoringAdapter(IssueSourceAdapter):
    """One issue per firing alert; resolved alerts are dropped."""

    source_type = SourceType.MONITORING

    def normalize(self, payload: Any) -> List[Issue]:
        alerts = self._require(payload, 'alerts')
        if not isinstance(alerts, list):
            raise AdapterError("'alerts' must be a list", source_type=self.source_type.value)

        group_status = payload.get('status', 'firing')
        issues = []
        for alert in alerts:
            if not isinstance(alert, dict):
                raise AdapterError("Alert must be an object", source_type=self.source_type.value)
            if alert.get('status', group_status) != 'firing':
                continue
            issues.append(self._convert(alert, payload.get('externalURL')))
        return issues

    def _convert(self, alert: Dict[str, Any], external_url: Optional[str]) -> Issue:
        labels = self._mapping(alert, 'labels')
        annotations = self._mapping(alert, 'annotations')
        name = labels.get('alertname') or 'alert'
        severity = str(labels.get('severity') or '').lower()

        # A re-fired alert is a new occurrence
        fingerprint = alert.get('fingerprint') or f"{name}:{labels.get('instance', '')}"
        provider_id = f"{fingerprint}:{alert.get('startsAt', '')}"

        issue_labels = ['alert']
        if severity:
            issue_labels.append(severity)
        if str(labels.get('env') or labels.get('environment') or '').lower() == 'production':
            issue_labels.append('production')

        title = annotations.get('summary') or f"{name} firing"
        if labels.get('service') and labels['service'] not in title:
            title = f"[{labels['service']}] {title}"

        body = annotations.get('description') or ''
        extra = ", ".join(f"{k}={v}" for k, v in sorted(labels.items()) if k not in ('alertname', 'severity'))
        if extra:
            body = f"{body}\n\nLabels: {extra}".strip()

        return self._build({
            'id': f"monitoring:{provider_id}",
            'provider_id': provider_id,
            'title': title,
            'body': body,
            'labels': issue_labels,
            'repository': labels.get('repository') or labels.get('service'),
            'priority': SEVERITY_PRIORITY.get(severity, Priority.MEDIUM),
            'type': IssueType.BUG,
            'created_at': parse_timestamp(alert.get('startsAt')),
            'url': alert.get('generatorURL') or external_url,
        }, raw_data=alert)
