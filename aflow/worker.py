"""Queue worker that runs workflow executions."""

from __future__ import annotations

import logging
from typing import Optional

from .contracts import ExecutionStatus, WorkflowExecutionResult, WorkflowJob
from .execute import WorkflowExecutor
from .notifications import NotificationService
from .persistence import ExecutionStore
from .queue import JobQueue
from .scheduler import Scheduler

logger = logging.getLogger(__name__)


class Worker:
    """Consumes workflow jobs and reports failed or paused executions."""

    def __init__(
        self,
        store: ExecutionStore,
        queue: JobQueue,
        executor: WorkflowExecutor,
        notifications: NotificationService,
        scheduler: Optional[Scheduler] = None,
    ) -> None:
        self._store = store
        self._queue = queue
        self._executor = executor
        self._notifications = notifications
        self._scheduler = scheduler or Scheduler(store, queue)
        self.processed: int = 0

    async def start(self, lifespan: Optional[float] = None) -> None:
        """Sync recurring jobs once, then process jobs until ``lifespan`` ends."""
        await self._queue.connect()
        try:
            await self._scheduler.sync_scheduler_jobs()
            async for job in self._queue.subscribe(lifespan=lifespan):
                try:
                    await self.handle_job(job)
                except Exception:
                    logger.exception(f"Error handling job {job.job_id}")
        finally:
            await self._queue.disconnect()

    async def handle_job(self, job: WorkflowJob) -> WorkflowExecutionResult:
        logger.info(
            f"Processing job {job.job_id} for workflow {job.workflow_id}"
            + (f" (resume {job.execution_id})" if job.execution_id else "")
        )
        result = await self._executor.execute(
            job.workflow_id, job.trigger_payload, job.execution_id
        )
        self.processed += 1

        if result.success:
            logger.info(f"Job {job.job_id} completed execution {result.execution_id}")
        elif result.execution_id is not None:
            await self._notify(result)
        else:
            logger.error(f"Job {job.job_id} did not start: {result.error}")
        return result

    async def _notify(self, result: WorkflowExecutionResult) -> None:
        try:
            execution = await self._store.get_execution(result.execution_id)
        except Exception:
            logger.exception(f"Could not load execution {result.execution_id} for notifications")
            return
        if execution is None or execution.status not in (
            ExecutionStatus.FAILED,
            ExecutionStatus.PAUSED,
        ):
            return
        await self._notifications.send_notifications(
            workflow_id=execution.workflow_id,
            execution_id=execution.id,
            status=execution.status,
            current_step_order=execution.current_step_order,
            error_message=execution.error or result.error,
            paused_at=execution.paused_at,
            resume_at=execution.resume_at,
        )
