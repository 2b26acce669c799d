"""Issue source adapter interface and shared parsing helpers."""

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from issue_dispatch.exceptions import AdapterError
from issue_dispatch.models.common import Issue, SourceType, utcnow
from issue_dispatch.models.validation import validate_issue


def parse_timestamp(value: Any) -> datetime:
    """Parse a provider timestamp into an aware datetime.

    Accepts ISO 8601 with ``Z``, ``+00:00`` or ``+0000`` offsets and epoch
    seconds. Missing or unparseable values fall back to now.
    """
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    if not value:
        return utcnow()

    text = str(value).strip().replace('Z', '+00:00')
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        try:
            parsed = datetime.strptime(text, '%Y-%m-%dT%H:%M:%S.%f%z')
        except ValueError:
            return utcnow()
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def label_names(labels: Optional[Iterable[Any]]) -> List[str]:
    """Label names from strings or ``{"name": ...}`` objects."""
    names = []
    for label in labels or ():
        name = label.get('name') if isinstance(label, dict) else label
        if name:
            names.append(str(name))
    return names


class IssueSourceAdapter(ABC):
    """Turns a provider payload into canonical issues.

    An adapter only parses. It never talks to the provider; webhooks and
    pollers hand it the JSON they received.
    """

    source_type: SourceType

    def __init__(self):
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    @abstractmethod
    def normalize(self, payload: Any) -> List[Issue]:
        """Normalize a payload.

        Returns:
            Canonical issues; empty when the payload is valid but carries no
            new issue (a closed issue, a resolved alert, an ignored action)

        Raises:
            AdapterError: If the payload is malformed
        """

    def _build(self, fields: Dict[str, Any], raw_data: Dict[str, Any]) -> Issue:
        fields.setdefault('source_type', self.source_type)
        return validate_issue(fields, raw_data=raw_data)

    def _require(self, data: Any, key: str) -> Any:
        if not isinstance(data, dict) or data.get(key) in (None, ''):
            raise AdapterError(f"Payload is missing '{key}'", source_type=self.source_type.value)
        return data[key]

    def _mapping(self, data: Dict[str, Any], key: str) -> Dict[str, Any]:
        value = data.get(key)
        if value in (None, ''):
            return {}
        if not isinstance(value, dict):
            raise AdapterError(f"'{key}' must be an object", source_type=self.source_type.value)
        return value
