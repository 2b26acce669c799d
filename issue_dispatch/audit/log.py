"""Append-only audit log backed by the ``audit_events`` table."""

import logging
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from issue_dispatch.models.common import Job, utcnow
from issue_dispatch.models.database import AUDIT_EVENT_TYPES, AuditEvent
from issue_dispatch.utils.logging import StructuredLogger


JOB_CLOSING_EVENTS = (
    'job_completed',
    'job_failed',
    'job_error',
    'job_cancelled',
    'approval_timeout',
    'job_interrupted',
)


def _jsonable(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_jsonable(v) for v in value]
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    return str(value)


class AuditLog:
    """Writes one row and one structured log line per event.

    Rows are only ever inserted. A failed insert is logged and the
    structured line is still written, so no event goes unrecorded.
    """

    def __init__(self, db_manager):
        self.db_manager = db_manager
        self.logger = logging.getLogger(__name__)
        self.structured_logger = StructuredLogger("issue_dispatch.audit")

    def record(self, event_type: str, job: Optional[Job] = None, issue_id: Optional[str] = None,
               source_type: Optional[str] = None, job_id: Optional[str] = None, **payload) -> Optional[int]:
        """Append an event.

        Args:
            event_type: One of ``AUDIT_EVENT_TYPES``
            job: Job the event concerns, if any
            issue_id: Issue id when there is no job
            job_id: Job id when the job object is gone
            source_type: Source type when there is no job
            **payload: Event details, stored as JSON

        Returns:
            The new row id, or None when the database write failed

        Raises:
            ValueError: If the event type is unknown
        """
        if event_type not in AUDIT_EVENT_TYPES:
            raise ValueError(f"Unknown audit event type: {event_type}")

        if job is not None:
            job_id = job.id
            issue_id = issue_id or job.issue.id
            source_type = source_type or job.issue.source_type.value
        data = _jsonable(payload)

        level = "WARNING" if event_type in ('job_error', 'approval_timeout', 'job_interrupted',
                                            'operator_alert', 'source_disabled') else "INFO"
        self.structured_logger.log_event(level, f"AUDIT_{event_type.upper()}",
                                         job_id=job_id, issue_id=issue_id, source_type=source_type,
                                         **{k: v for k, v in data.items() if not isinstance(v, (dict, list))})

        try:
            with self.db_manager.get_session() as session:
                row = AuditEvent(
                    event_type=event_type,
                    job_id=job_id,
                    issue_id=issue_id,
                    source_type=source_type,
                    payload=data,
                    created_at=utcnow(),
                )
                session.add(row)
                session.flush()
                return row.id
        except SQLAlchemyError as e:
            self.logger.error(f"Failed to persist audit event {event_type} for job {job_id}: {e}", exc_info=True)
            return None

    def events_for_job(self, job_id: str) -> List[Dict[str, Any]]:
        with self.db_manager.get_session() as session:
            rows = (session.query(AuditEvent)
                    .filter(AuditEvent.job_id == job_id)
                    .order_by(AuditEvent.id)
                    .all())
            return [row.to_dict() for row in rows]

    def recent(self, limit: int = 100, event_type: Optional[str] = None,
               since: Optional[datetime] = None) -> List[Dict[str, Any]]:
        """Most recent events first."""
        with self.db_manager.get_session() as session:
            query = session.query(AuditEvent)
            if event_type:
                query = query.filter(AuditEvent.event_type == event_type)
            if since:
                query = query.filter(AuditEvent.created_at >= since)
            rows = query.order_by(AuditEvent.id.desc()).limit(limit).all()
            return [row.to_dict() for row in rows]

    def unfinished_jobs(self) -> List[Dict[str, Any]]:
        """Dispatched jobs that never reached a closing event, oldest first.

        Each entry carries the job and issue ids, the executor and the last
        status recorded for the job.
        """
        with self.db_manager.get_session() as session:
            closed = {
                job_id for (job_id,) in session.query(AuditEvent.job_id)
                .filter(AuditEvent.event_type.in_(JOB_CLOSING_EVENTS))
                .distinct()
            }
            dispatched = [
                row for row in session.query(AuditEvent)
                .filter(AuditEvent.event_type == 'job_dispatched')
                .order_by(AuditEvent.id)
                .all()
                if row.job_id not in closed
            ]
            if not dispatched:
                return []

            last_status: Dict[str, str] = {}
            transitions = (session.query(AuditEvent)
                           .filter(AuditEvent.event_type == 'job_transition',
                                   AuditEvent.job_id.in_([row.job_id for row in dispatched]))
                           .order_by(AuditEvent.id)
                           .all())
            for row in transitions:
                last_status[row.job_id] = (row.payload or {}).get('to_status')

            return [{
                'job_id': row.job_id,
                'issue_id': row.issue_id,
                'source_type': row.source_type,
                'executor': (row.payload or {}).get('executor'),
                'status': last_status.get(row.job_id) or 'queued',
            } for row in dispatched]
