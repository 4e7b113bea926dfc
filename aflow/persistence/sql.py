"""SQL implementation of the execution store (SQLite or PostgreSQL)."""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator, Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlmodel import SQLModel

from ..contracts import (
    ErrorPolicy,
    ExecutionLogEntry,
    ExecutionStatus,
    NotificationConfig,
    RetryPolicy,
    Step,
    StepLogEvent,
    Trigger,
    Workflow,
    WorkflowExecution,
    WorkflowStatus,
)
from .models import (
    ExecutionLogRow,
    ExecutionRow,
    NotificationConfigRow,
    StepRow,
    TriggerRow,
    WorkflowRow,
)
from .repository import ExecutionStore


def async_database_url(database_url: str) -> str:
    """Map plain ``sqlite://``/``postgres://`` URLs onto their async drivers."""
    scheme, sep, rest = database_url.partition("://")
    if "+" in scheme:
        return database_url
    if scheme == "sqlite":
        return f"sqlite+aiosqlite{sep}{rest}"
    if scheme in ("postgres", "postgresql"):
        return f"postgresql+asyncpg{sep}{rest}"
    raise ValueError(f"Unsupported database backend: {database_url}")


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class SQLExecutionStore(ExecutionStore):
    """Persist workflows and executions with SQLModel over an async engine."""

    def __init__(self, database_url: str, echo: bool = False) -> None:
        self.database_url = async_database_url(database_url)
        connect_args = {}
        if self.database_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine = create_async_engine(
            self.database_url, echo=echo, future=True, connect_args=connect_args
        )
        self._initialized = False

    async def init_db(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(SQLModel.metadata.create_all)
        self._initialized = True

    async def close(self) -> None:
        await self.engine.dispose()

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        if not self._initialized:
            await self.init_db()
        async with AsyncSession(self.engine, expire_on_commit=False) as session:
            yield session

    # ------------------------------------------------------------------
    # Row conversion
    @staticmethod
    def _to_workflow(
        row: WorkflowRow, trigger: Optional[TriggerRow], steps: list[StepRow]
    ) -> Workflow:
        return Workflow(
            id=row.id,
            name=row.name,
            status=WorkflowStatus(row.status),
            trigger=(
                Trigger(id=trigger.id, type=trigger.type, config=trigger.config or {})
                if trigger
                else None
            ),
            steps=[
                Step(
                    id=s.id,
                    type=s.type,
                    order=s.order,
                    config=s.config or {},
                    retry=RetryPolicy.model_validate(s.retry) if s.retry else None,
                    error_policy=(
                        ErrorPolicy.model_validate(s.error_policy) if s.error_policy else None
                    ),
                )
                for s in steps
            ],
        )

    @staticmethod
    def _to_execution(row: ExecutionRow) -> WorkflowExecution:
        return WorkflowExecution(
            id=row.id,
            workflow_id=row.workflow_id,
            status=ExecutionStatus(row.status),
            current_step_order=row.current_step_order,
            context=row.context or {},
            paused_at=_aware(row.paused_at),
            resume_at=_aware(row.resume_at),
            error=row.error,
            created_at=_aware(row.created_at),
            updated_at=_aware(row.updated_at),
        )

    async def _load_workflow(self, session: AsyncSession, row: WorkflowRow) -> Workflow:
        trigger = (
            await session.execute(select(TriggerRow).where(TriggerRow.workflow_id == row.id))
        ).scalars().first()
        steps = (
            await session.execute(
                select(StepRow).where(StepRow.workflow_id == row.id).order_by(StepRow.order)
            )
        ).scalars().all()
        return self._to_workflow(row, trigger, list(steps))

    # ------------------------------------------------------------------
    # Workflows
    async def get_workflow(self, workflow_id: str) -> Workflow | None:
        async with self.session() as session:
            row = await session.get(WorkflowRow, workflow_id)
            if row is None:
                return None
            return await self._load_workflow(session, row)

    async def list_workflows(
        self, status: Optional[WorkflowStatus] = None
    ) -> list[Workflow]:
        query = select(WorkflowRow)
        if status is not None:
            query = query.where(WorkflowRow.status == status.value)
        async with self.session() as session:
            rows = (await session.execute(query)).scalars().all()
            return [await self._load_workflow(session, row) for row in rows]

    async def save_workflow(self, workflow: Workflow) -> None:
        async with self.session() as session:
            await session.merge(
                WorkflowRow(id=workflow.id, name=workflow.name, status=workflow.status.value)
            )
            await session.execute(delete(TriggerRow).where(TriggerRow.workflow_id == workflow.id))
            await session.execute(delete(StepRow).where(StepRow.workflow_id == workflow.id))
            if workflow.trigger is not None:
                session.add(
                    TriggerRow(
                        id=workflow.trigger.id,
                        workflow_id=workflow.id,
                        type=workflow.trigger.type,
                        config=workflow.trigger.config,
                    )
                )
            for step in workflow.steps:
                session.add(
                    StepRow(
                        id=step.id,
                        workflow_id=workflow.id,
                        type=step.type,
                        order=step.order,
                        config=step.config,
                        retry=step.retry.to_document() if step.retry else None,
                        error_policy=step.error_policy.to_document() if step.error_policy else None,
                    )
                )
            await session.commit()

    async def delete_workflow(self, workflow_id: str) -> None:
        async with self.session() as session:
            for model in (TriggerRow, StepRow, NotificationConfigRow):
                await session.execute(delete(model).where(model.workflow_id == workflow_id))
            await session.execute(delete(WorkflowRow).where(WorkflowRow.id == workflow_id))
            await session.commit()

    # ------------------------------------------------------------------
    # Executions
    async def get_execution(self, execution_id: str) -> WorkflowExecution | None:
        async with self.session() as session:
            row = await session.get(ExecutionRow, execution_id)
            return self._to_execution(row) if row else None

    async def list_executions(
        self, workflow_id: Optional[str] = None
    ) -> list[WorkflowExecution]:
        query = select(ExecutionRow).order_by(ExecutionRow.created_at.desc())
        if workflow_id is not None:
            query = query.where(ExecutionRow.workflow_id == workflow_id)
        async with self.session() as session:
            rows = (await session.execute(query)).scalars().all()
        return [self._to_execution(r) for r in rows]

    async def save_execution(self, execution: WorkflowExecution) -> None:
        async with self.session() as session:
            await session.merge(
                ExecutionRow(
                    id=execution.id,
                    workflow_id=execution.workflow_id,
                    status=execution.status.value,
                    current_step_order=execution.current_step_order,
                    context=execution.context,
                    paused_at=execution.paused_at,
                    resume_at=execution.resume_at,
                    error=execution.error,
                    created_at=execution.created_at,
                    updated_at=execution.updated_at,
                )
            )
            await session.commit()

    # ------------------------------------------------------------------
    # Notifications
    async def list_notification_configs(
        self, workflow_id: str
    ) -> list[NotificationConfig]:
        async with self.session() as session:
            rows = (
                await session.execute(
                    select(NotificationConfigRow).where(
                        NotificationConfigRow.workflow_id == workflow_id
                    )
                )
            ).scalars().all()
        return [
            NotificationConfig(
                id=r.id,
                workflow_id=r.workflow_id,
                type=r.type,
                config=r.config or {},
                on_failure=r.on_failure,
                on_pause=r.on_pause,
            )
            for r in rows
        ]

    async def save_notification_config(self, config: NotificationConfig) -> None:
        async with self.session() as session:
            await session.merge(
                NotificationConfigRow(
                    id=config.id,
                    workflow_id=config.workflow_id,
                    type=config.type,
                    config=config.config,
                    on_failure=config.on_failure,
                    on_pause=config.on_pause,
                )
            )
            await session.commit()

    # ------------------------------------------------------------------
    # Execution log
    async def append_log(self, entry: ExecutionLogEntry) -> None:
        async with self.session() as session:
            session.add(
                ExecutionLogRow(
                    execution_id=entry.execution_id,
                    step_id=entry.step_id,
                    step_order=entry.step_order,
                    event_type=entry.event_type.value,
                    timestamp=entry.timestamp,
                    metadata_=entry.metadata,
                )
            )
            await session.commit()

    async def list_logs(self, execution_id: str) -> list[ExecutionLogEntry]:
        async with self.session() as session:
            rows = (
                await session.execute(
                    select(ExecutionLogRow)
                    .where(ExecutionLogRow.execution_id == execution_id)
                    .order_by(ExecutionLogRow.id)
                )
            ).scalars().all()
        return [
            ExecutionLogEntry(
                id=r.id,
                execution_id=r.execution_id,
                step_id=r.step_id,
                step_order=r.step_order,
                event_type=StepLogEvent(r.event_type),
                timestamp=_aware(r.timestamp),
                metadata=r.metadata_,
            )
            for r in rows
        ]
