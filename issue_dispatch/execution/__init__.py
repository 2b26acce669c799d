"""Executors, plans and step handlers."""

from .base import (
    Executor, ExecutionConstraints, ExecutionContext, MAX_FILES_BY_RISK, build_execution_context
)
from .registry import CapabilityRegistry, StepHandler, StepInput, StepOutput
from .plan import PlanRunner, PlanStep, build_plan
from .handlers import (
    CreatePullRequestHandler, NoopStepHandler, ShellStepHandler, build_default_registry
)
from .autonomous import AutonomousExecutor
from .hybrid import HybridExecutor
from .human import HumanExecutor

__all__ = [
    'Executor',
    'ExecutionConstraints',
    'ExecutionContext',
    'MAX_FILES_BY_RISK',
    'build_execution_context',
    'CapabilityRegistry',
    'StepHandler',
    'StepInput',
    'StepOutput',
    'PlanRunner',
    'PlanStep',
    'build_plan',
    'CreatePullRequestHandler',
    'NoopStepHandler',
    'ShellStepHandler',
    'build_default_registry',
    'AutonomousExecutor',
    'HybridExecutor',
    'HumanExecutor',
]
