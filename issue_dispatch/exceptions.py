"""Error taxonomy for the dispatch pipeline."""

from typing import Optional


class DispatchError(Exception):
    """Base class for all dispatch pipeline errors."""
    pass


class ConfigurationError(DispatchError):
    """Raised when the system configuration is invalid."""
    pass


class AdapterError(DispatchError):
    """Malformed or unauthenticated inbound data from an issue source."""

    def __init__(self, message: str, source_type: Optional[str] = None):
        super().__init__(message)
        self.source_type = source_type


class SourcePollError(DispatchError):
    """Transient failure while polling an issue source."""

    def __init__(self, source_name: str, message: str):
        super().__init__(f"{source_name}: {message}")
        self.source_name = source_name


class EvaluationError(DispatchError):
    """The assessor or rule engine raised while evaluating an issue."""
    pass


class ExecutionStepError(DispatchError):
    """A plan step failed."""

    def __init__(self, step_name: str, message: str):
        super().__init__(f"Step '{step_name}' failed: {message}")
        self.step_name = step_name


class ApprovalTimeoutError(DispatchError):
    """No approval response arrived within the configured timeout."""

    def __init__(self, job_id: str, timeout_seconds: float):
        super().__init__(f"No approval response for job {job_id} within {timeout_seconds:.0f}s")
        self.job_id = job_id
        self.timeout_seconds = timeout_seconds


class InvalidTransitionError(DispatchError):
    """A job was moved along an edge the state machine does not allow."""

    def __init__(self, job_id: str, current: str, target: str):
        super().__init__(f"Job {job_id}: illegal transition {current} -> {target}")
        self.job_id = job_id
        self.current = current
        self.target = target


class RegistrationError(DispatchError):
    """A capability handler failed validation at registration time."""
    pass
