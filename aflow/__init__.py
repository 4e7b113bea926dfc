"""aflow: workflow automation engine with retries, pauses and scheduling."""

from .contracts import (
    ExecutionStatus,
    NotificationConfig,
    Step,
    Trigger,
    Workflow,
    WorkflowExecution,
    WorkflowExecutionResult,
    WorkflowStatus,
)
from .dispatch import resume_execution, trigger_workflow
from .execute import WorkflowExecutor
from .notifications import NotificationService
from .persistence import get_store
from .queue import get_queue
from .scheduler import Scheduler
from .steps import StepExecutor, StepExecutorRegistry, build_default_registry
from .worker import Worker

__version__ = "0.1.0"
__all__ = [
    "ExecutionStatus",
    "NotificationConfig",
    "NotificationService",
    "Scheduler",
    "Step",
    "StepExecutor",
    "StepExecutorRegistry",
    "Trigger",
    "Worker",
    "Workflow",
    "WorkflowExecution",
    "WorkflowExecutionResult",
    "WorkflowExecutor",
    "WorkflowStatus",
    "build_default_registry",
    "get_queue",
    "get_store",
    "resume_execution",
    "trigger_workflow",
]
