"""Entry points that put workflow executions onto the job queue."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, Optional

from .contracts import ExecutionStatus, WorkflowExecution, WorkflowJob, utcnow
from .errors import ExecutionNotFoundError, ResumeNotAllowedError, WorkflowNotFoundError
from .persistence import ExecutionStore
from .queue import JobQueue

logger = logging.getLogger(__name__)


async def trigger_workflow(
    store: ExecutionStore,
    queue: JobQueue,
    workflow_id: str,
    trigger_payload: Optional[Dict[str, Any]] = None,
    delay: float = 0,
) -> str:
    """Enqueue a fresh execution of ``workflow_id`` and return the job id."""
    if await store.get_workflow(workflow_id) is None:
        raise WorkflowNotFoundError(workflow_id)
    job = WorkflowJob(workflow_id=workflow_id, trigger_payload=trigger_payload or {})
    job_id = await queue.enqueue(job, delay=delay)
    logger.info(f"Queued workflow {workflow_id} as job {job_id}")
    return job_id


async def ensure_resumable(
    store: ExecutionStore, execution_id: str, now: Optional[datetime] = None
) -> WorkflowExecution:
    """Return the execution if it may be resumed now.

    Raises:
        ExecutionNotFoundError: No execution with this id exists.
        ResumeNotAllowedError: The execution is not paused, or it was paused
            until a time that has not been reached yet.
    """
    execution = await store.get_execution(execution_id)
    if execution is None:
        raise ExecutionNotFoundError(execution_id)
    if execution.status is not ExecutionStatus.PAUSED:
        raise ResumeNotAllowedError(
            f"Execution {execution_id} is {execution.status.value}, only paused executions can be resumed"
        )

    now = now or utcnow()
    if execution.resume_at is not None and execution.resume_at > now:
        raise ResumeNotAllowedError(
            f"Execution {execution_id} cannot be resumed before {execution.resume_at.isoformat()}",
            resume_at=execution.resume_at,
        )
    return execution


async def resume_execution(
    store: ExecutionStore,
    queue: JobQueue,
    execution_id: str,
    now: Optional[datetime] = None,
) -> str:
    """Enqueue a resume of a paused execution and return the job id."""
    execution = await ensure_resumable(store, execution_id, now)
    job = WorkflowJob(workflow_id=execution.workflow_id, execution_id=execution.id)
    job_id = await queue.enqueue(job)
    logger.info(f"Queued resume of execution {execution_id} as job {job_id}")
    return job_id
