"""Turns an evaluation into an executor choice and an effective priority."""

from issue_dispatch.models.common import (
    DispatchDecision, Evaluation, ExecutionMode, ExecutorKind, Issue, IssueType,
    Level, Priority, Suitability
)


UNCERTAIN_REASON = 'uncertain evaluation'


def calculate_priority(issue: Issue, evaluation: Evaluation) -> Priority:
    """Escalate the issue's priority from its evaluation.

    Escalations only ever raise the priority:

    * high risk lifts it to at least high
    * low complexity at medium priority becomes high (quick wins first)
    * a production bug becomes critical
    """
    priority = issue.priority

    def raise_to(target: Priority) -> None:
        nonlocal priority
        if target.rank < priority.rank:
            priority = target

    if evaluation.risk.level == Level.HIGH:
        raise_to(Priority.HIGH)
    if evaluation.complexity.level == Level.LOW and priority == Priority.MEDIUM:
        raise_to(Priority.HIGH)
    if issue.type == IssueType.BUG and 'production' in issue.normalized_labels:
        raise_to(Priority.CRITICAL)

    return priority


def make_dispatch_decision(evaluation: Evaluation, issue: Issue) -> DispatchDecision:
    """Choose an executor for an evaluated issue.

    Autonomous execution without approval happens only for high
    suitability, high confidence and low risk. Low suitability, high
    complexity or high risk always goes to a human, and that check runs
    before any other.

    Args:
        evaluation: Evaluation from the rule engine
        issue: The evaluated issue

    Returns:
        DispatchDecision for the job
    """
    priority = calculate_priority(issue, evaluation)

    def human(reason: str) -> DispatchDecision:
        return DispatchDecision(
            executor=ExecutorKind.HUMAN,
            mode=ExecutionMode.MANUAL,
            priority=priority,
            approval_required=False,
            reason=reason,
        )

    if evaluation.uncertain:
        return human(UNCERTAIN_REASON)

    if (evaluation.suitability == Suitability.LOW
            or evaluation.risk.level == Level.HIGH
            or evaluation.complexity.level == Level.HIGH):
        return human('low automation suitability, high complexity or high risk')

    if (evaluation.suitability == Suitability.HIGH
            and evaluation.confidence.level == Level.HIGH
            and evaluation.risk.level == Level.LOW):
        return DispatchDecision(
            executor=ExecutorKind.CLAUDE_CODE,
            mode=ExecutionMode.AUTONOMOUS,
            priority=priority,
            approval_required=False,
            reason='high suitability, high confidence and low risk',
        )

    if evaluation.suitability == Suitability.MEDIUM and evaluation.confidence.level == Level.MEDIUM:
        return DispatchDecision(
            executor=ExecutorKind.HYBRID,
            mode=ExecutionMode.SUPERVISED,
            priority=priority,
            approval_required=True,
            reason='medium suitability and confidence; supervised execution',
        )

    return human(UNCERTAIN_REASON)
