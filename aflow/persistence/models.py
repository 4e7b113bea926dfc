"""SQLModel tables backing the SQL execution store."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, Column, DateTime
from sqlmodel import Field, SQLModel


class WorkflowRow(SQLModel, table=True):
    __tablename__ = "workflows"

    id: str = Field(primary_key=True)
    name: str
    status: str = Field(default="draft", index=True)


class TriggerRow(SQLModel, table=True):
    __tablename__ = "triggers"

    id: str = Field(primary_key=True)
    workflow_id: str = Field(foreign_key="workflows.id", index=True, unique=True)
    type: str = Field(index=True)
    config: dict = Field(default_factory=dict, sa_column=Column(JSON))


class StepRow(SQLModel, table=True):
    __tablename__ = "steps"

    id: str = Field(primary_key=True)
    workflow_id: str = Field(foreign_key="workflows.id", index=True)
    type: str
    order: int
    config: dict = Field(default_factory=dict, sa_column=Column(JSON))
    retry: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    error_policy: Optional[dict] = Field(default=None, sa_column=Column(JSON))


class ExecutionRow(SQLModel, table=True):
    """One row per execution attempt; resumes update it in place."""

    __tablename__ = "workflow_executions"

    id: str = Field(primary_key=True)
    workflow_id: str = Field(index=True)
    status: str = Field(index=True)
    current_step_order: Optional[int] = None
    context: dict = Field(default_factory=dict, sa_column=Column(JSON))
    paused_at: Optional[datetime] = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    resume_at: Optional[datetime] = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    error: Optional[str] = None
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class NotificationConfigRow(SQLModel, table=True):
    __tablename__ = "notification_configs"

    id: str = Field(primary_key=True)
    workflow_id: str = Field(foreign_key="workflows.id", index=True)
    type: str
    config: dict = Field(default_factory=dict, sa_column=Column(JSON))
    on_failure: bool = True
    on_pause: bool = False


class ExecutionLogRow(SQLModel, table=True):
    __tablename__ = "execution_logs"

    id: Optional[int] = Field(default=None, primary_key=True)
    execution_id: str = Field(index=True)
    step_id: str
    step_order: int
    event_type: str
    timestamp: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    metadata_: Optional[dict] = Field(default=None, sa_column=Column("metadata", JSON))
