"""Shared fixtures: issue and job factories, fakes for the pipeline's collaborators."""

import asyncio
import itertools
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from issue_dispatch.approval import ApprovalGate  # noqa: E402
from issue_dispatch.config.settings import DatabaseConfig, DispatchConfig, SystemConfig  # noqa: E402
from issue_dispatch.database import init_database  # noqa: E402
from issue_dispatch.dispatch import Dispatcher  # noqa: E402
from issue_dispatch.evaluation import ResolutionHistory  # noqa: E402
from issue_dispatch.execution.base import Executor  # noqa: E402
from issue_dispatch.models.common import (  # noqa: E402
    DispatchDecision, Evaluation, ExecutionMode, ExecutionResult, ExecutorKind, Issue, Job,
    Level, Priority, Score, SourceType, StepResult, Suitability, utcnow
)
from issue_dispatch.notifications.models import (  # noqa: E402
    NotificationChannel, NotificationResult, NotificationStatus
)
from issue_dispatch.sources.heuristics import infer_type  # noqa: E402

_ids = itertools.count(1)

LEVEL_SCORES = {Level.LOW: 0.1, Level.MEDIUM: 0.5, Level.HIGH: 0.9}


def score(level: Level) -> Score:
    return Score(LEVEL_SCORES[level], level)


class FakeNotifier:
    """Records notifications instead of delivering them."""

    def __init__(self, status=NotificationStatus.SENT):
        self.status = status
        self.sent = []

    async def send_notification(self, notification_type, recipient_id, context, channels=None, priority=1):
        self.sent.append((notification_type, recipient_id, context))
        return [NotificationResult(request_id="test", channel=NotificationChannel.SLACK, status=self.status)]

    @property
    def types(self):
        return [notification_type for notification_type, _, _ in self.sent]


class FakeAssessor:
    """Returns fixed scores for every issue."""

    def __init__(self, complexity=Level.LOW, confidence=Level.HIGH, risk=Level.LOW):
        self.scores = (score(complexity), score(confidence), score(risk))
        self.history = ResolutionHistory()

    def assess(self, issue):
        return self.scores


class FakeExecutor(Executor):
    """Executor whose outcome is set by the test."""

    kind = ExecutorKind.CLAUDE_CODE

    def __init__(self, result=None, delay=0.0, raises=None, on_execute=None):
        super().__init__()
        self.result = result
        self.delay = delay
        self.raises = raises
        self.on_execute = on_execute
        self.calls = []

    async def execute(self, job):
        self.calls.append(job.id)
        if self.on_execute is not None:
            self.on_execute(job)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.raises is not None:
            raise self.raises
        return self.result or ExecutionResult(
            success=True, details="done", step_results=[StepResult(step="fix", success=True)]
        )


async def wait_until(predicate, timeout=3.0, interval=0.01):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(interval)


@pytest.fixture
def make_issue():
    def factory(title="Fix typo in README", body="", labels=(), source_type=SourceType.GITHUB,
                priority=Priority.MEDIUM, issue_type=None, issue_id=None, provider_id=None,
                repository="acme/widgets", raw_data=None):
        number = next(_ids)
        return Issue(
            id=issue_id or f"github:{repository}#{number}",
            title=title,
            body=body,
            labels=frozenset(labels),
            repository=repository,
            source_type=source_type,
            priority=priority,
            type=issue_type or infer_type(title, body, labels),
            created_at=utcnow(),
            provider_id=provider_id or str(1000 + number),
            raw_data=raw_data or {},
        )
    return factory


@pytest.fixture
def make_job(make_issue):
    def factory(issue=None, executor=ExecutorKind.CLAUDE_CODE, approval_required=False,
                priority=Priority.MEDIUM, risk=Level.LOW, job_id=None):
        issue = issue or make_issue()
        return Job(
            id=job_id or f"job{next(_ids):04d}",
            issue=issue,
            evaluation=Evaluation(score(Level.LOW), score(Level.HIGH), score(risk),
                                  suitability=Suitability.HIGH, reasoning=["test"]),
            dispatch_decision=DispatchDecision(
                executor=executor,
                mode=ExecutionMode.SUPERVISED if approval_required else ExecutionMode.AUTONOMOUS,
                priority=priority,
                approval_required=approval_required,
                reason="test",
            ),
        )
    return factory


@pytest.fixture
def db_manager():
    manager = init_database(DatabaseConfig(url="sqlite://"))
    yield manager
    manager.close()


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
async def build_dispatcher(notifier):
    """Dispatcher wired with fakes; the same executor serves every kind unless given a mapping."""
    created = []

    def factory(executor=None, executors=None, assessor=None, max_concurrent_jobs=3,
                approval_timeout_ms=60_000, audit_log=None, deduplicator=None):
        config = SystemConfig(dispatch=DispatchConfig(
            max_concurrent_jobs=max_concurrent_jobs,
            approval_timeout_ms=approval_timeout_ms,
            queue_poll_interval=0.05,
            post_outcome_comments=False,
        ))
        executor = executor or FakeExecutor()
        dispatcher = Dispatcher(
            executors=executors or {kind: executor for kind in ExecutorKind},
            approval_gate=ApprovalGate(notifier, config.dispatch),
            config=config,
            assessor=assessor,
            audit_log=audit_log,
            deduplicator=deduplicator,
            notification_manager=notifier,
        )
        created.append(dispatcher)
        return dispatcher

    yield factory
    for dispatcher in created:
        await dispatcher.shutdown()
