"""Executor interface and the per-job execution context."""

import os
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional
import logging

from issue_dispatch.config.settings import DispatchConfig
from issue_dispatch.models.common import (
    ExecutionResult, ExecutorKind, Issue, Job, Level
)


# Risk level -> largest change an autonomous run may make
MAX_FILES_BY_RISK = {
    Level.LOW: 20,
    Level.MEDIUM: 10,
    Level.HIGH: 3,
}


@dataclass(frozen=True)
class ExecutionConstraints:
    """Limits an executor must respect."""
    max_files_changed: int
    require_review: bool


@dataclass
class ExecutionContext:
    """Everything a plan step needs to know about the job it serves."""
    job_id: str
    issue: Issue
    branch_name: str
    workspace: str
    constraints: ExecutionConstraints
    instructions: Optional[str] = None
    outputs: Dict[str, Any] = field(default_factory=dict)


def build_execution_context(job: Job, config: DispatchConfig,
                            instructions: Optional[str] = None) -> ExecutionContext:
    """Derive branch, workspace and constraints for a job."""
    risk_level = job.evaluation.risk.level
    return ExecutionContext(
        job_id=job.id,
        issue=job.issue,
        branch_name=f"{config.branch_prefix}/{job.issue.slug}-{job.id[:8]}",
        workspace=os.path.join(config.workspace_root, job.id),
        constraints=ExecutionConstraints(
            max_files_changed=MAX_FILES_BY_RISK[risk_level],
            require_review=risk_level != Level.LOW,
        ),
        instructions=instructions,
    )


class Executor(ABC):
    """Runs a dispatched job and reports the outcome."""

    kind: ExecutorKind

    def __init__(self):
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    @abstractmethod
    async def execute(self, job: Job) -> ExecutionResult:
        """Execute a job.

        Errors that are part of normal operation (a failing step, a
        rejected approval) are reported through the result. Unexpected
        exceptions propagate to the dispatcher, which marks the job as
        errored.
        """
