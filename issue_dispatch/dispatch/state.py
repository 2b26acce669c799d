"""Job lifecycle state machine."""

from typing import Dict, FrozenSet

from issue_dispatch.exceptions import InvalidTransitionError
from issue_dispatch.models.common import Job, JobStatus, utcnow


TRANSITIONS: Dict[JobStatus, FrozenSet[JobStatus]] = {
    JobStatus.QUEUED: frozenset({
        JobStatus.AWAITING_APPROVAL,
        JobStatus.EXECUTING,
        JobStatus.CANCELLED,
    }),
    JobStatus.AWAITING_APPROVAL: frozenset({
        JobStatus.EXECUTING,
        JobStatus.FAILED,
        JobStatus.APPROVAL_TIMEOUT,
        JobStatus.CANCELLED,
    }),
    JobStatus.EXECUTING: frozenset({
        JobStatus.COMPLETED,
        JobStatus.FAILED,
        JobStatus.ERROR,
        JobStatus.CANCELLED,
    }),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
    JobStatus.ERROR: frozenset(),
    JobStatus.APPROVAL_TIMEOUT: frozenset(),
    JobStatus.CANCELLED: frozenset(),
}


def can_transition(current: JobStatus, target: JobStatus) -> bool:
    return target in TRANSITIONS[current]


def transition(job: Job, target: JobStatus) -> JobStatus:
    """Move a job to a new status.

    Sets ``started_at`` when the job starts executing and ``completed_at``
    when it reaches a terminal state.

    Returns:
        The status the job was in before the move

    Raises:
        InvalidTransitionError: If the state machine has no such edge
    """
    previous = job.status
    if not can_transition(previous, target):
        raise InvalidTransitionError(job.id, previous.value, target.value)

    job.status = target
    if target == JobStatus.EXECUTING:
        job.started_at = utcnow()
    if target.is_terminal:
        job.completed_at = utcnow()
    return previous
