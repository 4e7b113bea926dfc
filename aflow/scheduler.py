"""Keeps repeatable queue jobs in sync with scheduled workflows."""

from __future__ import annotations

import logging
from typing import Awaitable, Dict, Optional

from .contracts import Workflow, WorkflowJob, WorkflowStatus
from .persistence import ExecutionStore
from .queue import JobQueue

logger = logging.getLogger(__name__)

JOB_KEY_PREFIX = "scheduler-"


def scheduler_job_key(workflow_id: str) -> str:
    """Deterministic repeatable-job key for ``workflow_id``."""
    return f"{JOB_KEY_PREFIX}{workflow_id}"


def workflow_id_from_key(key: str) -> Optional[str]:
    if not key.startswith(JOB_KEY_PREFIX) or len(key) == len(JOB_KEY_PREFIX):
        return None
    return key[len(JOB_KEY_PREFIX):]


class Scheduler:
    """Registers, removes and reconciles recurring workflow jobs.

    None of the public methods raise. Queue or store failures are logged so
    that workflow edits and worker startup carry on without scheduling.
    """

    def __init__(self, store: ExecutionStore, queue: JobQueue) -> None:
        self._store = store
        self._queue = queue

    async def create_scheduler_job(self, workflow_id: str) -> None:
        """Register or update the repeatable job for an active cron workflow."""
        try:
            workflow = await self._store.get_workflow(workflow_id)
            if workflow is None:
                logger.error(f"Workflow not found: {workflow_id}")
                return
            await self._register(workflow)
        except Exception:
            logger.exception(f"Error creating scheduler job for workflow {workflow_id}")

    async def remove_scheduler_job(self, workflow_id: str) -> None:
        """Remove the workflow's repeatable job if one is registered."""
        try:
            await self._unregister(workflow_id)
        except Exception:
            logger.exception(f"Error removing scheduler job for workflow {workflow_id}")

    async def sync_scheduler_jobs(self) -> None:
        """Converge registered jobs onto the set of schedulable workflows."""
        try:
            workflows = await self._store.list_workflows(status=WorkflowStatus.ACTIVE)
            desired: Dict[str, Workflow] = {
                wf.id: wf for wf in workflows if wf.cron_expression is not None
            }
            logger.info(f"Found {len(desired)} active workflow(s) with cron triggers")

            actual: Dict[str, str] = {}
            for job in await self._queue.list_repeatable():
                workflow_id = workflow_id_from_key(job.key)
                if workflow_id is not None:
                    actual[workflow_id] = job.pattern

            for workflow_id, workflow in desired.items():
                if workflow_id not in actual:
                    await self._guarded(self._register(workflow), workflow_id)
                elif actual[workflow_id] != workflow.cron_expression:
                    logger.info(
                        f"Cron expression changed for workflow {workflow_id}, updating job"
                    )
                    await self._guarded(self._unregister(workflow_id), workflow_id)
                    await self._guarded(self._register(workflow), workflow_id)

            for workflow_id in actual.keys() - desired.keys():
                logger.info(f"Removing orphaned job for workflow {workflow_id}")
                await self._guarded(self._unregister(workflow_id), workflow_id)

            logger.info("Scheduler jobs synced")
        except Exception:
            logger.exception("Error syncing scheduler jobs")

    async def _register(self, workflow: Workflow) -> None:
        if workflow.status is not WorkflowStatus.ACTIVE:
            logger.info(
                f"Skipping job creation for workflow {workflow.id}: status is {workflow.status.value}"
            )
            return
        pattern = workflow.cron_expression
        if pattern is None:
            logger.info(
                f"Skipping job creation for workflow {workflow.id}: no usable cron trigger"
            )
            return
        key = scheduler_job_key(workflow.id)
        job = WorkflowJob(job_id=key, workflow_id=workflow.id, trigger_payload={})
        await self._queue.upsert_repeatable(key, pattern, job)
        logger.info(f"Created repeatable job for workflow {workflow.id}: {pattern}")

    async def _unregister(self, workflow_id: str) -> None:
        if await self._queue.remove_repeatable(scheduler_job_key(workflow_id)):
            logger.info(f"Removed repeatable job for workflow {workflow_id}")
        else:
            logger.info(f"No repeatable job found for workflow {workflow_id}")

    @staticmethod
    async def _guarded(operation: Awaitable[None], workflow_id: str) -> None:
        try:
            await operation
        except Exception:
            logger.exception(f"Scheduler update failed for workflow {workflow_id}")
