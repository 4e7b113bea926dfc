"""Workflow execution engine for aflow."""

from __future__ import annotations

import asyncio
import copy
import logging
from collections.abc import Mapping
from datetime import datetime
from typing import Any, Callable, Dict, Optional, Tuple, Union

from .contracts import (
    ExecutionLogEntry,
    ExecutionStatus,
    RetryPolicy,
    Step,
    StepLogEvent,
    Workflow,
    WorkflowExecution,
    WorkflowExecutionResult,
    utcnow,
)
from .errors import ExecutionNotFoundError, StepExecutionError, WorkflowNotFoundError
from .persistence import ExecutionStore
from .steps import StepExecutor, StepExecutorRegistry
from .utils.retry import Sleeper, schedule_retry

logger = logging.getLogger(__name__)


class WorkflowExecutor:
    """Runs a workflow's steps in order, checkpointing after every step.

    A call either starts a new execution from a trigger payload or resumes an
    existing one at its persisted ``current_step_order``. Exhausted step
    failures are resolved through the step's error policy: ``fail`` marks the
    execution failed, ``pause``/``pauseUntil`` suspend it so a later resume
    re-attempts the same step.
    """

    def __init__(
        self,
        store: ExecutionStore,
        registry: StepExecutorRegistry,
        default_retry: Optional[RetryPolicy] = None,
        sleep: Sleeper = asyncio.sleep,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._registry = registry
        self._default_retry = default_retry or RetryPolicy()
        self._sleep = sleep
        self._clock = clock

    async def execute(
        self,
        workflow_id: str,
        trigger_payload: Optional[Dict[str, Any]] = None,
        execution_id: Optional[str] = None,
    ) -> WorkflowExecutionResult:
        """Execute (or resume) a workflow and return the outcome."""
        try:
            prepared = await self._prepare(workflow_id, trigger_payload, execution_id)
        except Exception as exc:
            logger.exception(f"Could not start execution of workflow {workflow_id}")
            return WorkflowExecutionResult(
                success=False,
                context=dict(trigger_payload or {}),
                error=f"Could not start execution: {exc}",
            )
        if isinstance(prepared, WorkflowExecutionResult):
            return prepared
        workflow, execution, context, start_order = prepared

        try:
            pending = [s for s in workflow.steps if s.order >= start_order]
            for index, step in enumerate(pending):
                next_order = pending[index + 1].order if index + 1 < len(pending) else None
                try:
                    output = await self._run_step(execution, step, context)
                except Exception as exc:
                    message = str(exc)
                    policy = step.resolved_error_policy()
                    if policy.pauses:
                        execution = await self._transition(
                            execution,
                            status=ExecutionStatus.PAUSED,
                            current_step_order=step.order,
                            paused_at=self._clock(),
                            resume_at=policy.resume_at,
                            error=message,
                        )
                        await self._log_event(
                            execution, step, StepLogEvent.PAUSED, {"error": message}
                        )
                        logger.warning(
                            f"Execution {execution.id} paused at step {step.order}: {message}"
                        )
                        return WorkflowExecutionResult(
                            success=False,
                            context=context,
                            error=message,
                            paused=True,
                            execution_id=execution.id,
                            resume_at=policy.resume_at,
                        )

                    execution = await self._transition(
                        execution,
                        status=ExecutionStatus.FAILED,
                        current_step_order=step.order,
                        error=message,
                    )
                    await self._log_event(
                        execution, step, StepLogEvent.FAILED, {"error": message}
                    )
                    raise

                context.update(output)
                execution = await self._transition(
                    execution, current_step_order=next_order, context=dict(context)
                )
                await self._log_event(execution, step, StepLogEvent.COMPLETED)
                logger.info(
                    f"Execution {execution.id}: step {step.order} ({step.type}) completed"
                )

            execution = await self._transition(
                execution,
                status=ExecutionStatus.COMPLETED,
                current_step_order=None,
                context=dict(context),
            )
            logger.info(f"Execution {execution.id} of workflow {workflow_id} completed")
            return WorkflowExecutionResult(
                success=True, context=context, execution_id=execution.id
            )
        except Exception as exc:
            message = str(exc)
            if execution.status is ExecutionStatus.RUNNING:
                try:
                    execution = await self._transition(
                        execution, status=ExecutionStatus.FAILED, error=message
                    )
                except Exception:
                    logger.exception(
                        f"Could not record failure of execution {execution.id}"
                    )
            logger.error(f"Execution {execution.id} of workflow {workflow_id} failed: {message}")
            return WorkflowExecutionResult(
                success=False, context=context, error=message, execution_id=execution.id
            )

    def close(self) -> None:
        """Release resources held by the step executors."""
        self._registry.close()

    # ------------------------------------------------------------------
    async def _prepare(
        self,
        workflow_id: str,
        trigger_payload: Optional[Dict[str, Any]],
        execution_id: Optional[str],
    ) -> Union[WorkflowExecutionResult, Tuple[Workflow, WorkflowExecution, Dict[str, Any], int]]:
        """Load the workflow and persist the execution as running.

        Returns an unsuccessful result when the workflow or execution does
        not exist. Store errors propagate to the caller.
        """
        workflow = await self._store.get_workflow(workflow_id)
        if workflow is None:
            error = str(WorkflowNotFoundError(workflow_id))
            logger.error(error)
            return WorkflowExecutionResult(
                success=False, context=dict(trigger_payload or {}), error=error
            )

        if execution_id is not None:
            execution = await self._store.get_execution(execution_id)
            if execution is None or execution.workflow_id != workflow_id:
                error = str(ExecutionNotFoundError(execution_id))
                logger.error(f"{error} (workflow {workflow_id})")
                return WorkflowExecutionResult(
                    success=False, context={}, error=error, execution_id=execution_id
                )
            context = dict(execution.context)
            start_order = execution.current_step_order or 0
            execution = execution.model_copy(
                update={
                    "status": ExecutionStatus.RUNNING,
                    "current_step_order": self._first_order(workflow, start_order),
                    "paused_at": None,
                    "resume_at": None,
                    "error": None,
                }
            )
            logger.info(
                f"Resuming execution {execution.id} of workflow {workflow_id} at step {start_order}"
            )
        else:
            context = dict(trigger_payload or {})
            start_order = 0
            execution = WorkflowExecution(
                workflow_id=workflow_id,
                status=ExecutionStatus.RUNNING,
                current_step_order=self._first_order(workflow, start_order),
                context=dict(context),
                created_at=self._clock(),
            )
            logger.info(f"Starting execution {execution.id} of workflow {workflow_id}")

        execution = await self._transition(execution)
        return workflow, execution, context, start_order

    async def _run_step(
        self, execution: WorkflowExecution, step: Step, context: Dict[str, Any]
    ) -> Dict[str, Any]:
        """Invoke the step's executor with retries and exponential backoff."""
        executor = self._registry.resolve(step.type)
        retry = step.retry_policy(self._default_retry)
        config = step.executor_config()

        for attempt in range(retry.max_attempts):
            if attempt == 0:
                await self._log_event(execution, step, StepLogEvent.STARTED)
            else:
                await self._log_event(
                    execution, step, StepLogEvent.RETRIED, {"retryCount": attempt}
                )
            try:
                return await self._invoke(executor, step, config, context)
            except Exception as exc:
                if attempt == retry.max_attempts - 1:
                    raise StepExecutionError(
                        str(exc), attempts=retry.max_attempts, cause=exc
                    ) from exc
                if not executor.idempotent:
                    logger.warning(
                        f"Retrying non-idempotent step {step.order} ({step.type}); "
                        "side effects may be repeated"
                    )
                logger.warning(
                    f"Execution {execution.id}: step {step.order} attempt "
                    f"{attempt + 1}/{retry.max_attempts} failed: {exc}"
                )
                await schedule_retry(attempt, retry.initial_delay, self._sleep)

    @staticmethod
    async def _invoke(
        executor: StepExecutor,
        step: Step,
        config: Dict[str, Any],
        context: Dict[str, Any],
    ) -> Dict[str, Any]:
        output = await executor.execute(copy.deepcopy(config), copy.deepcopy(context))
        if output is None:
            return {}
        if not isinstance(output, Mapping):
            raise TypeError(
                f"Executor for step type '{step.type}' returned "
                f"{type(output).__name__}, expected a mapping"
            )
        return dict(output)

    async def _transition(
        self, execution: WorkflowExecution, **changes: Any
    ) -> WorkflowExecution:
        """Persist ``execution`` with ``changes`` applied as one write."""
        updated = execution.model_copy(update={**changes, "updated_at": self._clock()})
        await self._store.save_execution(updated)
        return updated

    async def _log_event(
        self,
        execution: WorkflowExecution,
        step: Step,
        event: StepLogEvent,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        try:
            await self._store.append_log(
                ExecutionLogEntry(
                    execution_id=execution.id,
                    step_id=step.id,
                    step_order=step.order,
                    event_type=event,
                    timestamp=self._clock(),
                    metadata=metadata,
                )
            )
        except Exception:
            logger.exception(
                f"Failed to log {event.value} event for step {step.id} of execution {execution.id}"
            )

    @staticmethod
    def _first_order(workflow: Workflow, start_order: int) -> Optional[int]:
        return next((s.order for s in workflow.steps if s.order >= start_order), None)
