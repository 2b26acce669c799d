"""Audit log and analytics."""

from .log import AuditLog
from .analytics import DispatchAnalytics, DispatchReport

__all__ = ['AuditLog', 'DispatchAnalytics', 'DispatchReport']
