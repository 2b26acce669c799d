"""Dispatch analytics computed from the audit log."""

import logging
import statistics
from collections import Counter, defaultdict
from dataclasses import dataclass, field, asdict
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import and_, func
from sqlalchemy.orm import Session

from issue_dispatch.models.common import utcnow
from issue_dispatch.models.database import AuditEvent


logger = logging.getLogger(__name__)

TERMINAL_EVENTS = {
    'job_completed': 'completed',
    'job_failed': 'failed',
    'job_error': 'error',
    'job_cancelled': 'cancelled',
    'approval_timeout': 'approval_timeout',
    'job_interrupted': 'interrupted',
}


@dataclass
class DispatchReport:
    """Summary of pipeline activity over a period."""
    report_id: str
    generated_at: datetime
    period_start: datetime
    period_end: datetime
    event_totals: Dict[str, int] = field(default_factory=dict)
    jobs_by_status: Dict[str, int] = field(default_factory=dict)
    executor_mix: Dict[str, int] = field(default_factory=dict)
    autonomous_success_rate: Optional[float] = None
    mean_execution_seconds: Optional[float] = None
    approval_outcomes: Dict[str, int] = field(default_factory=dict)
    disabled_sources: List[str] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        for key in ('generated_at', 'period_start', 'period_end'):
            data[key] = data[key].isoformat()
        return data


class DispatchAnalytics:
    """Reads audit events and summarizes how dispatch is going."""

    def __init__(self, db_manager):
        self.db_manager = db_manager

    def generate_report(self, days_back: int = 7) -> DispatchReport:
        """Generate a report for the last ``days_back`` days."""
        end_date = utcnow()
        start_date = end_date - timedelta(days=days_back)

        with self.db_manager.get_session() as db:
            totals = self._event_totals(db, start_date, end_date)
            events = (db.query(AuditEvent)
                      .filter(and_(AuditEvent.created_at >= start_date, AuditEvent.created_at <= end_date))
                      .order_by(AuditEvent.id)
                      .all())
            rows = [(e.event_type, e.job_id, e.source_type, dict(e.payload or {})) for e in events]

        report = DispatchReport(
            report_id=f"dispatch_report_{int(end_date.timestamp())}",
            generated_at=end_date,
            period_start=start_date,
            period_end=end_date,
            event_totals=totals,
        )
        self._summarize_jobs(report, rows)
        report.recommendations = self._generate_recommendations(report)
        logger.info(f"Generated dispatch report over {days_back} days from {len(rows)} events")
        return report

    def _event_totals(self, db: Session, start_date: datetime, end_date: datetime) -> Dict[str, int]:
        counts = (db.query(AuditEvent.event_type, func.count(AuditEvent.id))
                  .filter(and_(AuditEvent.created_at >= start_date, AuditEvent.created_at <= end_date))
                  .group_by(AuditEvent.event_type)
                  .all())
        return {event_type: count for event_type, count in counts}

    def _summarize_jobs(self, report: DispatchReport, rows) -> None:
        executors: Dict[str, str] = {}
        statuses = Counter()
        approvals = Counter()
        autonomous = defaultdict(int)
        durations = []
        disabled = []

        for event_type, job_id, source_type, payload in rows:
            if event_type == 'job_dispatched':
                executors[job_id] = payload.get('executor', 'unknown')
            elif event_type in TERMINAL_EVENTS:
                statuses[TERMINAL_EVENTS[event_type]] += 1
                if payload.get('duration_seconds') is not None:
                    durations.append(float(payload['duration_seconds']))
                if executors.get(job_id) == 'claude-code':
                    autonomous['total'] += 1
                    if event_type == 'job_completed':
                        autonomous['succeeded'] += 1
            elif event_type == 'approval_response':
                approvals[payload.get('decision', 'unknown')] += 1
            elif event_type == 'source_disabled':
                disabled.append(payload.get('source') or source_type or 'unknown')

        if 'approval_timeout' in statuses:
            approvals['timeout'] = statuses['approval_timeout']

        report.jobs_by_status = dict(statuses)
        report.executor_mix = dict(Counter(executors.values()))
        report.approval_outcomes = dict(approvals)
        report.disabled_sources = disabled
        if autonomous['total']:
            report.autonomous_success_rate = round(autonomous['succeeded'] / autonomous['total'], 3)
        if durations:
            report.mean_execution_seconds = round(statistics.mean(durations), 1)

    def _generate_recommendations(self, report: DispatchReport) -> List[str]:
        recommendations = []
        if report.autonomous_success_rate is not None and report.autonomous_success_rate < 0.5:
            recommendations.append(
                "Autonomous runs fail more often than they succeed; raise the confidence threshold "
                "or review step commands"
            )
        if report.approval_outcomes.get('timeout', 0) > report.approval_outcomes.get('approve', 0):
            recommendations.append("Approval requests time out more than they are approved; check the reviewer channel")
        if report.disabled_sources:
            recommendations.append(f"Re-enable disabled sources after fixing them: {', '.join(sorted(set(report.disabled_sources)))}")
        if report.jobs_by_status.get('error', 0):
            recommendations.append("Some jobs ended in error; inspect job_error audit events")
        return recommendations
