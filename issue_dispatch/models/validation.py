"""Validation of adapter output and API request bodies."""

import re
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from issue_dispatch.exceptions import AdapterError
from .common import ApprovalDecision, Issue, IssueType, Priority, SourceType


_URL_PATTERN = re.compile(r'^https?://\S+$', re.IGNORECASE)


class IssueValidator(BaseModel):
    """Pydantic validator for canonical issues produced by adapters."""

    model_config = ConfigDict(use_enum_values=False, validate_assignment=True)

    id: str = Field(..., min_length=1, max_length=200)
    title: str = Field(..., min_length=1, max_length=500)
    body: str = Field(default='', max_length=65536)
    labels: List[str] = Field(default_factory=list, max_length=100)
    repository: Optional[str] = Field(None, max_length=200)
    source_type: SourceType
    priority: Priority
    type: IssueType
    created_at: datetime
    url: Optional[str] = Field(None, max_length=1000)
    provider_id: str = Field(..., min_length=1, max_length=200)

    @field_validator('id', 'provider_id')
    @classmethod
    def validate_identifier(cls, v):
        """Identifiers must carry something other than whitespace."""
        if not v.strip():
            raise ValueError('Identifier cannot be empty or whitespace only')
        return v.strip()

    @field_validator('title')
    @classmethod
    def validate_title(cls, v):
        if not v.strip():
            raise ValueError('Issue title cannot be empty or whitespace only')
        return v.strip()

    @field_validator('labels')
    @classmethod
    def validate_labels(cls, v):
        """Drop blank labels and reject over-long ones."""
        cleaned = []
        for label in v:
            label = label.strip()
            if not label:
                continue
            if len(label) > 100:
                raise ValueError(f'Label "{label[:20]}..." is too long (max 100 characters)')
            if label not in cleaned:
                cleaned.append(label)
        return cleaned

    @field_validator('url')
    @classmethod
    def validate_url(cls, v):
        if v is None or v == '':
            return None
        if not _URL_PATTERN.match(v):
            raise ValueError('Invalid URL format')
        return v


class ApprovalRequestBody(BaseModel):
    """Body of ``POST /approvals/{job_id}``."""

    decision: ApprovalDecision
    text: str = Field(default='', max_length=10000)
    responder: Optional[str] = Field(None, max_length=200)


def validate_issue(data: Dict[str, Any], raw_data: Optional[Dict[str, Any]] = None) -> Issue:
    """Validate adapter output and build an immutable Issue.

    Args:
        data: Issue fields as produced by an adapter
        raw_data: Original provider payload kept alongside the issue

    Returns:
        Validated Issue

    Raises:
        AdapterError: If the data does not describe a valid issue
    """
    try:
        validated = IssueValidator(**data)
    except ValidationError as e:
        source = data.get('source_type')
        source_name = source.value if isinstance(source, SourceType) else source
        raise AdapterError(f"Invalid issue data: {e}", source_type=source_name) from e

    return Issue(
        id=validated.id,
        title=validated.title,
        body=validated.body,
        labels=frozenset(validated.labels),
        repository=validated.repository,
        source_type=validated.source_type,
        priority=validated.priority,
        type=validated.type,
        created_at=validated.created_at,
        url=validated.url,
        provider_id=validated.provider_id,
        raw_data=raw_data or {},
    )
