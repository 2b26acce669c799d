"""Dispatch decisions, job lifecycle, queueing and the dispatcher."""

from .decision import UNCERTAIN_REASON, calculate_priority, make_dispatch_decision
from .state import TRANSITIONS, can_transition, transition
from .queue import JobQueue
from .dispatcher import Dispatcher

__all__ = [
    'UNCERTAIN_REASON',
    'calculate_priority',
    'make_dispatch_decision',
    'TRANSITIONS',
    'can_transition',
    'transition',
    'JobQueue',
    'Dispatcher',
]
