"""Tests for the audit log and dispatch analytics."""

import pytest

from issue_dispatch.audit import AuditLog, DispatchAnalytics
from issue_dispatch.models.common import ExecutorKind, JobStatus


@pytest.fixture
def audit(db_manager):
    return AuditLog(db_manager)


def test_record_and_read_back(audit, make_job):
    job = make_job()
    first = audit.record('job_dispatched', job, executor=job.dispatch_decision.executor.value,
                         evaluation={"suitability": "high"}, labels={"docs"})
    audit.record('job_transition', job, from_status=JobStatus.QUEUED, to_status=JobStatus.EXECUTING)

    events = audit.events_for_job(job.id)
    assert first == events[0]["id"]
    assert [event["event_type"] for event in events] == ["job_dispatched", "job_transition"]
    assert events[0]["issue_id"] == job.issue.id
    assert events[0]["source_type"] == "github"
    assert events[0]["payload"] == {"executor": "claude-code", "evaluation": {"suitability": "high"},
                                    "labels": ["docs"]}
    assert events[1]["payload"] == {"from_status": "queued", "to_status": "executing"}


def test_unknown_event_type_is_refused(audit):
    with pytest.raises(ValueError):
        audit.record('job_deleted', issue_id="github:acme/widgets#1")
    assert audit.recent() == []


def test_recent_filters_by_type(audit, make_job):
    audit.record('source_disabled', source="sentry:billing", source_type="sentry", consecutive_errors=5)
    audit.record('job_dispatched', make_job(), executor="human")
    audit.record('source_enabled', source="sentry:billing", source_type="sentry")

    assert [event["event_type"] for event in audit.recent()] == [
        "source_enabled", "job_dispatched", "source_disabled"
    ]
    [disabled] = audit.recent(event_type='source_disabled')
    assert disabled["job_id"] is None
    assert disabled["source_type"] == "sentry"
    assert disabled["payload"]["consecutive_errors"] == 5


def test_report_summarizes_activity(audit, db_manager, make_job):
    completed = make_job()
    failed = make_job()
    escalated = make_job(executor=ExecutorKind.HUMAN)
    supervised = make_job(executor=ExecutorKind.HYBRID, approval_required=True)

    for job in (completed, failed, escalated, supervised):
        audit.record('job_dispatched', job, executor=job.dispatch_decision.executor.value)
    audit.record('job_completed', completed, duration_seconds=10.0)
    audit.record('job_failed', failed, duration_seconds=30.0, failed_step="test")
    audit.record('job_completed', escalated, duration_seconds=2.0)
    audit.record('approval_response', supervised, decision="reject", responder="alice")
    audit.record('job_failed', supervised)
    audit.record('source_disabled', source="sentry:billing", source_type="sentry", consecutive_errors=5)

    report = DispatchAnalytics(db_manager).generate_report(days_back=1)

    assert report.event_totals["job_dispatched"] == 4
    assert report.jobs_by_status == {"completed": 2, "failed": 2}
    assert report.executor_mix == {"claude-code": 2, "human": 1, "hybrid": 1}
    assert report.autonomous_success_rate == 0.5
    assert report.mean_execution_seconds == 14.0
    assert report.approval_outcomes == {"reject": 1}
    assert report.disabled_sources == ["sentry:billing"]
    assert any("sentry:billing" in recommendation for recommendation in report.recommendations)

    data = report.to_dict()
    assert data["period_end"] == report.period_end.isoformat()


def test_empty_report(db_manager):
    report = DispatchAnalytics(db_manager).generate_report()
    assert report.event_totals == {}
    assert report.autonomous_success_rate is None
    assert report.recommendations == []
