"""Command line interface for running aflow workers and inspecting executions."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Optional

import typer
import yaml

from .config import AflowConfig, load_config
from .contracts import NotificationConfig, RetryPolicy, Workflow
from .dispatch import ensure_resumable, resume_execution, trigger_workflow
from .errors import AflowError
from .execute import WorkflowExecutor
from .logging import configure_logging
from .notifications import EmailChannel, NotificationService, WebhookChannel
from .persistence import ExecutionStore, get_store
from .queue import get_queue
from .scheduler import Scheduler
from .steps import build_default_registry
from .worker import Worker

app = typer.Typer(help="CLI for aflow workflow automation")

worker_app = typer.Typer(help="Commands for running workers")
scheduler_app = typer.Typer(help="Commands for recurring workflow jobs")
workflow_app = typer.Typer(help="Commands for managing workflows")
execution_app = typer.Typer(help="Commands for inspecting executions")

app.add_typer(worker_app, name="worker")
app.add_typer(scheduler_app, name="scheduler")
app.add_typer(workflow_app, name="workflow")
app.add_typer(execution_app, name="execution")

_state: dict = {}


@app.callback()
def main(
    config: Optional[Path] = typer.Option(None, help="Path to a YAML config file"),
    log_level: Optional[str] = typer.Option(None, help="Override the configured log level"),
) -> None:
    """aflow CLI entry point."""
    settings = load_config(str(config) if config else None)
    configure_logging(log_level or settings.log_level)
    _state["config"] = settings


def _config() -> AflowConfig:
    return _state.get("config") or load_config()


def _executor(store: ExecutionStore, config: AflowConfig) -> WorkflowExecutor:
    return WorkflowExecutor(
        store,
        build_default_registry(transform_timeout=config.worker.transform_timeout),
        default_retry=RetryPolicy(
            max_retries=config.retry.max_retries,
            initial_delay=config.retry.initial_delay,
        ),
    )


def _notifications(store: ExecutionStore, config: AflowConfig) -> NotificationService:
    return NotificationService(
        store,
        {
            "email": EmailChannel(config.smtp),
            "webhook": WebhookChannel(timeout=config.worker.webhook_timeout),
        },
    )


def _parse_payload(payload: Optional[str]) -> dict:
    if not payload:
        return {}
    try:
        data = json.loads(payload)
    except json.JSONDecodeError as exc:
        raise typer.BadParameter(f"payload is not valid JSON: {exc}")
    if not isinstance(data, dict):
        raise typer.BadParameter("payload must be a JSON object")
    return data


@worker_app.command("run")
def worker_run(
    lifespan: Optional[float] = typer.Option(
        None, help="Worker timeout in seconds (default: run indefinitely)"
    ),
) -> None:
    """
    Run a worker that executes queued workflow jobs.

    Syncs recurring jobs with the store once at startup, then consumes jobs
    from the configured queue. Failed and paused executions are reported to
    the workflow's notification channels.

    Example:
        aflow worker run
        aflow --config prod.yaml worker run --lifespan 300
    """
    config = _config()
    store = get_store(config=config)
    queue = get_queue(config=config)
    engine = _executor(store, config)
    worker = Worker(
        store,
        queue,
        engine,
        _notifications(store, config),
        Scheduler(store, queue),
    )

    async def _run() -> None:
        try:
            await worker.start(lifespan=lifespan)
        finally:
            engine.close()
            await store.close()

    typer.echo(f"Starting worker on queue '{config.queue.name}' ({config.queue.backend})")
    asyncio.run(_run())
    typer.echo(f"Worker stopped after {worker.processed} job(s)")


@scheduler_app.command("sync")
def scheduler_sync() -> None:
    """Reconcile repeatable queue jobs with active cron workflows."""
    config = _config()
    store = get_store(config=config)
    queue = get_queue(config=config)

    async def _run() -> list:
        try:
            await Scheduler(store, queue).sync_scheduler_jobs()
            return await queue.list_repeatable()
        finally:
            await queue.disconnect()
            await store.close()

    jobs = asyncio.run(_run())
    if not jobs:
        typer.echo("No recurring jobs registered")
        return
    for job in jobs:
        typer.echo(f"{job.key}\t{job.pattern}\tnext={job.next_run_at}")


@workflow_app.command("import")
def workflow_import(path: Path) -> None:
    """
    Load a workflow definition from a YAML or JSON file.

    The document holds the workflow fields plus an optional ``notifications``
    list. The workflow's recurring job is created or removed to match its
    new status and trigger.

    Example:
        aflow workflow import ./workflows/daily-report.yaml
    """
    if not path.exists():
        typer.secho("Specified path does not exist", fg=typer.colors.RED)
        raise typer.Exit(code=1)

    document = yaml.safe_load(path.read_text()) or {}
    notifications = document.pop("notifications", []) or []
    try:
        workflow = Workflow.model_validate(document)
        configs = [
            NotificationConfig.model_validate({**item, "workflowId": workflow.id})
            for item in notifications
        ]
    except ValueError as exc:
        typer.secho(f"Invalid workflow definition: {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=1)

    config = _config()
    store = get_store(config=config)
    queue = get_queue(config=config)

    async def _run() -> None:
        try:
            await store.save_workflow(workflow)
            for item in configs:
                await store.save_notification_config(item)
            scheduler = Scheduler(store, queue)
            if workflow.cron_expression:
                await scheduler.create_scheduler_job(workflow.id)
            else:
                await scheduler.remove_scheduler_job(workflow.id)
        finally:
            await queue.disconnect()
            await store.close()

    asyncio.run(_run())
    typer.echo(f"Imported workflow {workflow.id} ({workflow.name})")


@workflow_app.command("list")
def workflow_list() -> None:
    """List stored workflows with their status and trigger."""
    store = get_store(config=_config())

    async def _run() -> list[Workflow]:
        try:
            return await store.list_workflows()
        finally:
            await store.close()

    workflows = asyncio.run(_run())
    if not workflows:
        typer.echo("No workflows found")
        return
    for wf in workflows:
        trigger = wf.trigger.type if wf.trigger else "-"
        typer.echo(f"{wf.id}\t{wf.status.value}\t{trigger}\t{wf.name}")


@workflow_app.command("run")
def workflow_run(
    workflow_id: str,
    payload: Optional[str] = typer.Option(None, help="Trigger payload as a JSON object"),
    enqueue: bool = typer.Option(False, help="Queue the run for a worker instead"),
) -> None:
    """
    Execute a workflow now, or queue it for a worker.

    Example:
        aflow workflow run 6f1c... --payload '{"email": "a@example.com"}'
        aflow workflow run 6f1c... --enqueue
    """
    trigger_payload = _parse_payload(payload)
    config = _config()
    store = get_store(config=config)

    async def _run():
        try:
            if enqueue:
                queue = get_queue(config=config)
                try:
                    return await trigger_workflow(store, queue, workflow_id, trigger_payload)
                finally:
                    await queue.disconnect()
            engine = _executor(store, config)
            try:
                return await engine.execute(workflow_id, trigger_payload)
            finally:
                engine.close()
        finally:
            await store.close()

    try:
        outcome = asyncio.run(_run())
    except AflowError as exc:
        typer.secho(str(exc), fg=typer.colors.RED)
        raise typer.Exit(code=1)

    if enqueue:
        typer.echo(f"Queued job {outcome}")
        return
    typer.echo(json.dumps(outcome.to_document(), indent=2))
    if not outcome.success:
        raise typer.Exit(code=1)


@execution_app.command("list")
def execution_list(
    workflow_id: Optional[str] = typer.Option(None, help="Only show this workflow"),
) -> None:
    """List executions, newest first."""
    store = get_store(config=_config())

    async def _run():
        try:
            return await store.list_executions(workflow_id)
        finally:
            await store.close()

    executions = asyncio.run(_run())
    if not executions:
        typer.echo("No executions found")
        return
    for ex in executions:
        step = "-" if ex.current_step_order is None else ex.current_step_order
        typer.echo(f"{ex.id}\t{ex.workflow_id}\t{ex.status.value}\tstep={step}")


@execution_app.command("show")
def execution_show(execution_id: str) -> None:
    """
    Show an execution with its context and step event log.

    Example:
        aflow execution show 0b7e...
        # Output: Execution 0b7e...: paused (workflow 6f1c...)
        #         Step: 1
        #         - step 0 started
        #         - step 0 completed
    """
    store = get_store(config=_config())

    async def _run():
        try:
            execution = await store.get_execution(execution_id)
            logs = await store.list_logs(execution_id) if execution else []
            return execution, logs
        finally:
            await store.close()

    execution, logs = asyncio.run(_run())
    if execution is None:
        typer.echo("Execution not found")
        raise typer.Exit(code=1)

    typer.echo(
        f"Execution {execution.id}: {execution.status.value} (workflow {execution.workflow_id})"
    )
    if execution.current_step_order is not None:
        typer.echo(f"Step: {execution.current_step_order}")
    if execution.error:
        typer.echo(f"Error: {execution.error}")
    if execution.paused_at:
        typer.echo(f"Paused at: {execution.paused_at.isoformat()}")
    if execution.resume_at:
        typer.echo(f"Resume at: {execution.resume_at.isoformat()}")
    typer.echo(f"Context: {json.dumps(execution.context, default=str)}")
    for entry in logs:
        extra = f" {json.dumps(entry.metadata, default=str)}" if entry.metadata else ""
        typer.echo(f"- step {entry.step_order} {entry.event_type.value}{extra}")


@execution_app.command("resume")
def execution_resume(
    execution_id: str,
    inline: bool = typer.Option(False, help="Run the resumed execution in this process"),
) -> None:
    """
    Resume a paused execution from the step that paused it.

    Executions paused until a future time are rejected until that time.

    Example:
        aflow execution resume 0b7e...
    """
    config = _config()
    store = get_store(config=config)

    async def _run():
        try:
            if not inline:
                queue = get_queue(config=config)
                try:
                    return await resume_execution(store, queue, execution_id)
                finally:
                    await queue.disconnect()
            execution = await ensure_resumable(store, execution_id)
            engine = _executor(store, config)
            try:
                return await engine.execute(execution.workflow_id, execution_id=execution.id)
            finally:
                engine.close()
        finally:
            await store.close()

    try:
        outcome = asyncio.run(_run())
    except AflowError as exc:
        typer.secho(str(exc), fg=typer.colors.RED)
        raise typer.Exit(code=1)

    if not inline:
        typer.echo(f"Queued job {outcome}")
        return
    typer.echo(json.dumps(outcome.to_document(), indent=2))
    if not outcome.success:
        raise typer.Exit(code=1)


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    app()
