"""SQLAlchemy database models for the issue dispatch pipeline."""

from sqlalchemy import (
    Column, String, Integer, DateTime, JSON, UniqueConstraint, Index, event
)
from sqlalchemy.orm import declarative_base, validates
from sqlalchemy.sql import func

from .common import SourceType

Base = declarative_base()


AUDIT_EVENT_TYPES = (
    'job_dispatched',
    'job_transition',
    'job_completed',
    'job_failed',
    'job_error',
    'job_cancelled',
    'approval_requested',
    'approval_response',
    'approval_timeout',
    'job_escalated',
    'job_interrupted',
    'operator_alert',
    'source_enabled',
    'source_disabled',
)


class AuditEvent(Base):
    """Append-only record of something the pipeline did."""
    __tablename__ = 'audit_events'

    id = Column(Integer, primary_key=True, autoincrement=True)
    event_type = Column(String(50), nullable=False)
    job_id = Column(String(64), nullable=True)
    issue_id = Column(String(200), nullable=True)
    source_type = Column(String(20), nullable=True)
    payload = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), nullable=False, default=func.now())

    __table_args__ = (
        Index('idx_audit_events_type', 'event_type'),
        Index('idx_audit_events_job', 'job_id'),
        Index('idx_audit_events_created_at', 'created_at'),
    )

    @validates('event_type')
    def validate_event_type(self, key, event_type):
        if event_type not in AUDIT_EVENT_TYPES:
            raise ValueError(f"Event type must be one of {AUDIT_EVENT_TYPES}")
        return event_type

    def to_dict(self):
        return {
            'id': self.id,
            'event_type': self.event_type,
            'job_id': self.job_id,
            'issue_id': self.issue_id,
            'source_type': self.source_type,
            'payload': self.payload,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }


class SeenEvent(Base):
    """Provider events already ingested, keyed by source and provider id."""
    __tablename__ = 'seen_events'

    id = Column(Integer, primary_key=True, autoincrement=True)
    source_type = Column(String(20), nullable=False)
    provider_id = Column(String(200), nullable=False)
    issue_id = Column(String(200), nullable=True)
    first_seen = Column(DateTime(timezone=True), nullable=False, default=func.now())

    __table_args__ = (
        UniqueConstraint('source_type', 'provider_id', name='uq_seen_events_key'),
    )

    @validates('source_type')
    def validate_source_type(self, key, source_type):
        allowed = [s.value for s in SourceType]
        if source_type not in allowed:
            raise ValueError(f"Source type must be one of {allowed}")
        return source_type


@event.listens_for(AuditEvent, 'before_update')
def _reject_audit_update(mapper, connection, target):
    raise ValueError("Audit events are append-only and cannot be updated")


@event.listens_for(AuditEvent, 'before_delete')
def _reject_audit_delete(mapper, connection, target):
    raise ValueError("Audit events are append-only and cannot be deleted")
