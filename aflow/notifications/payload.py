"""Notification payload shared by every channel."""

from __future__ import annotations

from datetime import datetime
from typing import Iterable, Optional

from pydantic import BaseModel

from ..contracts import AflowModel, ExecutionStatus, Step


class FailedStep(BaseModel):
    order: int
    type: str


class NotificationPayload(AflowModel):
    """Body delivered to email and webhook channels.

    ``paused_at``/``resume_at`` are only filled for paused executions.
    """

    workflow_id: str
    execution_id: str
    failed_step: Optional[FailedStep] = None
    error_message: Optional[str] = None
    status: ExecutionStatus
    paused_at: Optional[datetime] = None
    resume_at: Optional[datetime] = None

    def to_document(self) -> dict:
        document = super().to_document()
        for key in ("pausedAt", "resumeAt"):
            if document.get(key) is None:
                document.pop(key, None)
        return document


def build_notification_payload(
    workflow_id: str,
    execution_id: str,
    status: ExecutionStatus,
    current_step_order: Optional[int],
    error_message: Optional[str],
    paused_at: Optional[datetime] = None,
    resume_at: Optional[datetime] = None,
    steps: Iterable[Step] = (),
) -> NotificationPayload:
    failed_step = None
    if current_step_order is not None:
        step = next((s for s in steps if s.order == current_step_order), None)
        if step is not None:
            failed_step = FailedStep(order=step.order, type=step.type)

    paused = status is ExecutionStatus.PAUSED
    return NotificationPayload(
        workflow_id=workflow_id,
        execution_id=execution_id,
        failed_step=failed_step,
        error_message=error_message,
        status=status,
        paused_at=paused_at if paused else None,
        resume_at=resume_at if paused else None,
    )
