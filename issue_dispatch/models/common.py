"""Common data models for the issue dispatch pipeline."""

import copy
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Pattern, Set, Tuple


class SourceType(Enum):
    """Systems issues are ingested from."""
    GITHUB = "github"
    SENTRY = "sentry"
    MONITORING = "monitoring"
    JIRA = "jira"
    MANUAL = "manual"


class Priority(Enum):
    """Issue priority levels."""
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        """Queue ordering rank, lower runs first."""
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {
    Priority.CRITICAL: 0,
    Priority.HIGH: 1,
    Priority.MEDIUM: 2,
    Priority.LOW: 3,
}


class IssueType(Enum):
    """Kind of work an issue asks for."""
    BUG = "bug"
    FEATURE = "feature"
    DOCUMENTATION = "documentation"
    TESTING = "testing"
    GENERAL = "general"


class Level(Enum):
    """Banded score level."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Suitability(Enum):
    """How well an issue suits autonomous handling."""
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    UNKNOWN = "unknown"


class ExecutorKind(Enum):
    """Executor backends a job can be dispatched to."""
    CLAUDE_CODE = "claude-code"
    HYBRID = "hybrid"
    HUMAN = "human"


class ExecutionMode(Enum):
    """How much human involvement an execution has."""
    AUTONOMOUS = "autonomous"
    SUPERVISED = "supervised"
    MANUAL = "manual"


class JobStatus(Enum):
    """Job lifecycle states."""
    QUEUED = "queued"
    AWAITING_APPROVAL = "awaiting_approval"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"
    ERROR = "error"
    APPROVAL_TIMEOUT = "approval_timeout"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({
    JobStatus.COMPLETED,
    JobStatus.FAILED,
    JobStatus.ERROR,
    JobStatus.APPROVAL_TIMEOUT,
    JobStatus.CANCELLED,
})


class ApprovalDecision(Enum):
    """Responses a reviewer can give to an approval request."""
    APPROVE = "approve"
    REJECT = "reject"
    MODIFY = "modify"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Issue:
    """Canonical issue, normalized from any source.

    Issues are immutable once ingested. ``provider_id`` is the identifier
    the source system uses for the underlying event and, together with the
    source type, forms the deduplication key.
    """
    id: str
    title: str
    body: str
    labels: FrozenSet[str]
    repository: Optional[str]
    source_type: SourceType
    priority: Priority
    type: IssueType
    created_at: datetime
    url: Optional[str] = None
    provider_id: str = ""
    raw_data: Mapping[str, Any] = field(default_factory=dict, compare=False, hash=False, repr=False)

    def __post_init__(self):
        object.__setattr__(self, 'labels', frozenset(self.labels or ()))
        if not self.provider_id:
            object.__setattr__(self, 'provider_id', self.id)

    @property
    def dedup_key(self) -> Tuple[str, str]:
        return self.source_type.value, self.provider_id

    @property
    def text(self) -> str:
        """Title and body joined, for pattern matching."""
        return f"{self.title}\n{self.body or ''}"

    @property
    def normalized_labels(self) -> FrozenSet[str]:
        return frozenset(label.lower() for label in self.labels)

    @property
    def slug(self) -> str:
        slug = re.sub(r'[^a-z0-9]+', '-', self.title.lower()).strip('-')
        return slug[:40].rstrip('-') or 'issue'


@dataclass(frozen=True)
class Score:
    """A weighted score with its band and the per-factor inputs."""
    score: float
    level: Level
    factors: Mapping[str, float] = field(default_factory=dict)


@dataclass
class Evaluation:
    """Result of assessing an issue and running the rule engine."""
    complexity: Score
    confidence: Score
    risk: Score
    suitability: Suitability = Suitability.UNKNOWN
    reasoning: List[str] = field(default_factory=list)
    recommendations: Set[str] = field(default_factory=set)
    uncertain: bool = False

    def snapshot(self) -> 'Evaluation':
        """Copy used when freezing the evaluation into a job."""
        return copy.deepcopy(self)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'complexity': {'score': self.complexity.score, 'level': self.complexity.level.value},
            'confidence': {'score': self.confidence.score, 'level': self.confidence.level.value},
            'risk': {'score': self.risk.score, 'level': self.risk.level.value},
            'suitability': self.suitability.value,
            'reasoning': list(self.reasoning),
            'recommendations': sorted(self.recommendations),
            'uncertain': self.uncertain,
        }


@dataclass(frozen=True)
class DispatchDecision:
    """Where and how a job runs."""
    executor: ExecutorKind
    mode: ExecutionMode
    priority: Priority
    approval_required: bool
    reason: str


@dataclass(frozen=True)
class ApprovalResponse:
    """A reviewer's terminal answer to an approval request."""
    job_id: str
    decision: ApprovalDecision
    text: str = ""
    responder: Optional[str] = None
    received_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class StepResult:
    """Outcome of a single plan step."""
    step: str
    success: bool
    output: str = ""
    duration_ms: float = 0.0
    error: Optional[str] = None


@dataclass
class ExecutionResult:
    """Outcome of running a job through an executor."""
    success: bool
    details: str = ""
    error: Optional[str] = None
    failed_step: Optional[str] = None
    step_results: List[StepResult] = field(default_factory=list)
    outputs: Dict[str, Any] = field(default_factory=dict)
    cancelled: bool = False


@dataclass
class Job:
    """A unit of dispatched work.

    Only the dispatcher mutates a job, and every status change goes through
    the state machine in ``issue_dispatch.dispatch.state``.
    """
    id: str
    issue: Issue
    evaluation: Evaluation
    dispatch_decision: DispatchDecision
    status: JobStatus = JobStatus.QUEUED
    created_at: datetime = field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    result: Optional[ExecutionResult] = None
    error: Optional[str] = None
    attempt: int = 1
    previous_job_id: Optional[str] = None
    approval: Optional[ApprovalResponse] = None
    cancel_requested: bool = False

    @property
    def priority(self) -> Priority:
        return self.dispatch_decision.priority

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'issue_id': self.issue.id,
            'title': self.issue.title,
            'source_type': self.issue.source_type.value,
            'status': self.status.value,
            'executor': self.dispatch_decision.executor.value,
            'mode': self.dispatch_decision.mode.value,
            'priority': self.priority.value,
            'approval_required': self.dispatch_decision.approval_required,
            'attempt': self.attempt,
            'previous_job_id': self.previous_job_id,
            'created_at': self.created_at.isoformat(),
            'started_at': self.started_at.isoformat() if self.started_at else None,
            'completed_at': self.completed_at.isoformat() if self.completed_at else None,
            'error': self.error,
        }


@dataclass(frozen=True)
class PatternRule:
    """A named issue pattern with the confidence it is automatable."""
    name: str
    pattern: Pattern
    keywords: Tuple[str, ...]
    confidence: float
    automation_suitable: bool

    def matches(self, text: str) -> bool:
        return self.pattern.search(text) is not None


@dataclass(frozen=True)
class RuleOutcome:
    """What a matching evaluation rule contributes."""
    matches: bool
    suitability: Optional[Suitability] = None
    reasoning: Optional[str] = None
    recommendations: FrozenSet[str] = frozenset()
    final: bool = False


NO_MATCH = RuleOutcome(matches=False)
