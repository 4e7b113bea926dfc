"""Execution store abstraction."""

from __future__ import annotations

from typing import Optional, Protocol

from ..contracts import (
    ExecutionLogEntry,
    NotificationConfig,
    Workflow,
    WorkflowExecution,
    WorkflowStatus,
)


class ExecutionStore(Protocol):
    """Durable storage for workflow definitions, executions and notifications.

    ``save_execution`` writes the whole execution row in a single transaction
    so status, step pointer, context and pause/error fields always move
    together.
    """

    async def get_workflow(self, workflow_id: str) -> Workflow | None:
        """Load a workflow with its trigger and steps in ascending order."""

    async def list_workflows(
        self, status: Optional[WorkflowStatus] = None
    ) -> list[Workflow]:
        """Return workflows, optionally filtered by status."""

    async def save_workflow(self, workflow: Workflow) -> None:
        """Create or replace a workflow definition."""

    async def delete_workflow(self, workflow_id: str) -> None:
        """Remove a workflow definition and its notification configs."""

    async def get_execution(self, execution_id: str) -> WorkflowExecution | None:
        """Load an execution by id."""

    async def list_executions(
        self, workflow_id: Optional[str] = None
    ) -> list[WorkflowExecution]:
        """Return executions, newest first."""

    async def save_execution(self, execution: WorkflowExecution) -> None:
        """Atomically create or overwrite an execution row."""

    async def list_notification_configs(
        self, workflow_id: str
    ) -> list[NotificationConfig]:
        """Return the notification channels configured for a workflow."""

    async def save_notification_config(self, config: NotificationConfig) -> None:
        """Create or replace a notification config."""

    async def append_log(self, entry: ExecutionLogEntry) -> None:
        """Append a step event to the execution log."""

    async def list_logs(self, execution_id: str) -> list[ExecutionLogEntry]:
        """Return the execution log in insertion order."""

    async def close(self) -> None:
        """Release connections held by the store."""
