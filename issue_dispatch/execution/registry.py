"""Registry mapping plan step types to the handlers that run them.

Handlers declare pydantic input and output schemas. The schemas are checked
when a handler is registered, and every call is validated against them, so
a misconfigured backend fails at startup rather than mid-plan.
"""

import inspect
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Type

from pydantic import BaseModel, Field

from issue_dispatch.exceptions import RegistrationError


class StepInput(BaseModel):
    """What every step handler receives."""
    job_id: str
    step: str
    step_type: str
    issue_id: str
    issue_title: str
    issue_body: str = ''
    repository: Optional[str] = None
    branch_name: str
    workspace: str
    max_files_changed: int = Field(..., ge=0)
    require_review: bool = True
    instructions: Optional[str] = None
    previous_outputs: Dict[str, Any] = Field(default_factory=dict)


class StepOutput(BaseModel):
    """What every step handler returns."""
    success: bool
    output: str = ''
    error: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)


class StepHandler(ABC):
    """A backend able to run one kind of plan step."""

    input_schema: Type[StepInput] = StepInput
    output_schema: Type[StepOutput] = StepOutput

    @abstractmethod
    async def handle(self, step_input: StepInput) -> StepOutput:
        """Run the step and describe the outcome."""


class CapabilityRegistry:
    """Maps step types to handlers, with an optional fallback handler."""

    def __init__(self, default_handler: Optional[StepHandler] = None):
        self._handlers: Dict[str, StepHandler] = {}
        self.logger = logging.getLogger(__name__)
        self.default_handler = None
        if default_handler is not None:
            self._validate(default_handler, '<default>')
            self.default_handler = default_handler

    def register(self, step_type: str, handler: StepHandler) -> None:
        """Register a handler for a step type.

        Raises:
            RegistrationError: If the handler's schemas or entry point are unusable
        """
        if not step_type:
            raise RegistrationError("Step type must not be empty")
        self._validate(handler, step_type)
        if step_type in self._handlers:
            self.logger.warning(f"Replacing handler for step type {step_type}")
        self._handlers[step_type] = handler
        self.logger.debug(f"Registered {handler.__class__.__name__} for {step_type}")

    def resolve(self, step_type: str) -> StepHandler:
        """Return the handler for a step type, or the default handler.

        Raises:
            KeyError: If no handler is registered and there is no default
        """
        handler = self._handlers.get(step_type, self.default_handler)
        if handler is None:
            raise KeyError(f"No handler registered for step type {step_type}")
        return handler

    def __contains__(self, step_type: str) -> bool:
        return step_type in self._handlers

    @staticmethod
    def _validate(handler: Any, step_type: str) -> None:
        input_schema = getattr(handler, 'input_schema', None)
        output_schema = getattr(handler, 'output_schema', None)

        if not (inspect.isclass(input_schema) and issubclass(input_schema, StepInput)):
            raise RegistrationError(f"Handler for {step_type} must declare an input_schema derived from StepInput")
        if not (inspect.isclass(output_schema) and issubclass(output_schema, StepOutput)):
            raise RegistrationError(f"Handler for {step_type} must declare an output_schema derived from StepOutput")
        if not inspect.iscoroutinefunction(getattr(handler, 'handle', None)):
            raise RegistrationError(f"Handler for {step_type} must define an async handle() method")
