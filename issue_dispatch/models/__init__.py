"""Data models and database schemas."""

# Common data classes and enums
from .common import (
    SourceType,
    Priority,
    IssueType,
    Level,
    Suitability,
    ExecutorKind,
    ExecutionMode,
    JobStatus,
    ApprovalDecision,
    TERMINAL_STATUSES,
    Issue,
    Score,
    Evaluation,
    DispatchDecision,
    ApprovalResponse,
    StepResult,
    ExecutionResult,
    Job,
    PatternRule,
    RuleOutcome,
    NO_MATCH,
    utcnow,
)

# SQLAlchemy database models
from .database import (
    Base,
    AuditEvent,
    SeenEvent,
    AUDIT_EVENT_TYPES,
)

# Validation
from .validation import (
    IssueValidator,
    ApprovalRequestBody,
    validate_issue,
)

__all__ = [
    # Enums
    'SourceType',
    'Priority',
    'IssueType',
    'Level',
    'Suitability',
    'ExecutorKind',
    'ExecutionMode',
    'JobStatus',
    'ApprovalDecision',
    'TERMINAL_STATUSES',

    # Common data classes
    'Issue',
    'Score',
    'Evaluation',
    'DispatchDecision',
    'ApprovalResponse',
    'StepResult',
    'ExecutionResult',
    'Job',
    'PatternRule',
    'RuleOutcome',
    'NO_MATCH',
    'utcnow',

    # SQLAlchemy models
    'Base',
    'AuditEvent',
    'SeenEvent',
    'AUDIT_EVENT_TYPES',

    # Validation
    'IssueValidator',
    'ApprovalRequestBody',
    'validate_issue',
]
