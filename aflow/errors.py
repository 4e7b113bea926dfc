"""Exception hierarchy for the aflow engine."""

from __future__ import annotations

from datetime import datetime
from typing import Optional


class AflowError(Exception):
    """Base class for all aflow errors."""


class WorkflowNotFoundError(AflowError):
    def __init__(self, workflow_id: str) -> None:
        super().__init__(f"Workflow not found: {workflow_id}")
        self.workflow_id = workflow_id


class ExecutionNotFoundError(AflowError):
    def __init__(self, execution_id: str) -> None:
        super().__init__(f"Execution not found: {execution_id}")
        self.execution_id = execution_id


class UnknownStepTypeError(AflowError):
    def __init__(self, step_type: str) -> None:
        super().__init__(f"No executor registered for step type: {step_type}")
        self.step_type = step_type


class StepConfigurationError(AflowError):
    """A step's stored configuration is missing or malformed."""


class TransformError(AflowError):
    """A transform snippet was rejected or raised."""


class StepExecutionError(AflowError):
    """A step failed on every permitted attempt."""

    def __init__(self, message: str, attempts: int, cause: Optional[BaseException] = None) -> None:
        super().__init__(f"Step failed after {attempts} attempts: {message}")
        self.attempts = attempts
        self.cause = cause


class ResumeNotAllowedError(AflowError):
    """Raised by the resume surface when an execution may not be resumed yet."""

    def __init__(self, message: str, resume_at: Optional[datetime] = None) -> None:
        super().__init__(message)
        self.resume_at = resume_at


class QueueError(AflowError):
    """The job queue rejected or failed an operation."""


__all__ = [
    "AflowError",
    "WorkflowNotFoundError",
    "ExecutionNotFoundError",
    "UnknownStepTypeError",
    "StepConfigurationError",
    "TransformError",
    "StepExecutionError",
    "ResumeNotAllowedError",
    "QueueError",
]
