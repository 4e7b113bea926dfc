"""In-memory implementation of the execution store."""

from __future__ import annotations

from typing import Dict, List, Optional

from ..contracts import (
    ExecutionLogEntry,
    NotificationConfig,
    Workflow,
    WorkflowExecution,
    WorkflowStatus,
)
from .repository import ExecutionStore


class InMemoryExecutionStore(ExecutionStore):
    """Keep workflows and executions in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts. Records are copied on the way in and
    out so callers never share mutable state with the store.
    """

    def __init__(self) -> None:
        self._workflows: Dict[str, Workflow] = {}
        self._executions: Dict[str, WorkflowExecution] = {}
        self._notifications: Dict[str, NotificationConfig] = {}
        self._logs: List[ExecutionLogEntry] = []

    # ------------------------------------------------------------------
    async def get_workflow(self, workflow_id: str) -> Workflow | None:
        wf = self._workflows.get(workflow_id)
        return wf.model_copy(deep=True) if wf else None

    async def list_workflows(
        self, status: Optional[WorkflowStatus] = None
    ) -> list[Workflow]:
        return [
            wf.model_copy(deep=True)
            for wf in self._workflows.values()
            if status is None or wf.status is status
        ]

    async def save_workflow(self, workflow: Workflow) -> None:
        self._workflows[workflow.id] = workflow.model_copy(deep=True)

    async def delete_workflow(self, workflow_id: str) -> None:
        self._workflows.pop(workflow_id, None)
        self._notifications = {
            key: cfg
            for key, cfg in self._notifications.items()
            if cfg.workflow_id != workflow_id
        }

    # ------------------------------------------------------------------
    async def get_execution(self, execution_id: str) -> WorkflowExecution | None:
        execution = self._executions.get(execution_id)
        return execution.model_copy(deep=True) if execution else None

    async def list_executions(
        self, workflow_id: Optional[str] = None
    ) -> list[WorkflowExecution]:
        executions = [
            e.model_copy(deep=True)
            for e in self._executions.values()
            if workflow_id is None or e.workflow_id == workflow_id
        ]
        return sorted(executions, key=lambda e: e.created_at, reverse=True)

    async def save_execution(self, execution: WorkflowExecution) -> None:
        self._executions[execution.id] = execution.model_copy(deep=True)

    # ------------------------------------------------------------------
    async def list_notification_configs(
        self, workflow_id: str
    ) -> list[NotificationConfig]:
        return [
            cfg.model_copy(deep=True)
            for cfg in self._notifications.values()
            if cfg.workflow_id == workflow_id
        ]

    async def save_notification_config(self, config: NotificationConfig) -> None:
        self._notifications[config.id] = config.model_copy(deep=True)

    # ------------------------------------------------------------------
    async def append_log(self, entry: ExecutionLogEntry) -> None:
        self._logs.append(entry.model_copy(update={"id": len(self._logs) + 1}))

    async def list_logs(self, execution_id: str) -> list[ExecutionLogEntry]:
        return [e for e in self._logs if e.execution_id == execution_id]
