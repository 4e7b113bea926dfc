"""Scheduler lifecycle and reconciliation tests."""

import pytest

from aflow.contracts import Trigger, WorkflowJob, WorkflowStatus
from aflow.scheduler import Scheduler, scheduler_job_key, workflow_id_from_key


def cron(expression):
    return Trigger(type="cron", config={"cronExpression": expression})


@pytest.fixture
def scheduler(store, queue):
    return Scheduler(store, queue)


async def _keys(queue):
    return sorted(j.key for j in await queue.list_repeatable())


def test_job_key_is_deterministic():
    assert scheduler_job_key("abc") == "scheduler-abc"
    assert workflow_id_from_key("scheduler-abc") == "abc"
    assert workflow_id_from_key("scheduler-") is None
    assert workflow_id_from_key("other-abc") is None


@pytest.mark.asyncio
async def test_active_cron_workflow_gets_a_job(scheduler, queue, make_workflow):
    workflow = await make_workflow([], trigger=cron("0 9 * * 1"))

    await scheduler.create_scheduler_job(workflow.id)
    await scheduler.create_scheduler_job(workflow.id)

    jobs = await queue.list_repeatable()
    assert len(jobs) == 1
    assert jobs[0].key == f"scheduler-{workflow.id}"
    assert jobs[0].pattern == "0 9 * * 1"
    assert jobs[0].job.workflow_id == workflow.id
    assert jobs[0].job.trigger_payload == {}


@pytest.mark.parametrize(
    "status, trigger",
    [
        (WorkflowStatus.DRAFT, cron("0 9 * * *")),
        (WorkflowStatus.PUBLISHED, cron("0 9 * * *")),
        (WorkflowStatus.ACTIVE, None),
        (WorkflowStatus.ACTIVE, Trigger(type="webhook", config={})),
        (WorkflowStatus.ACTIVE, cron("")),
        (WorkflowStatus.ACTIVE, Trigger(type="cron", config={})),
    ],
)
@pytest.mark.asyncio
async def test_ineligible_workflows_get_no_job(scheduler, queue, make_workflow, status, trigger):
    workflow = await make_workflow([], status=status, trigger=trigger)

    await scheduler.create_scheduler_job(workflow.id)

    assert await queue.get_repeatable(scheduler_job_key(workflow.id)) is None


@pytest.mark.asyncio
async def test_unknown_workflow_is_a_noop(scheduler, queue):
    await scheduler.create_scheduler_job("missing")

    assert await queue.list_repeatable() == []


@pytest.mark.asyncio
async def test_remove_is_idempotent(scheduler, queue, make_workflow):
    workflow = await make_workflow([], trigger=cron("*/10 * * * *"))
    await scheduler.create_scheduler_job(workflow.id)

    await scheduler.remove_scheduler_job(workflow.id)
    await scheduler.remove_scheduler_job(workflow.id)

    assert await queue.list_repeatable() == []


@pytest.mark.asyncio
async def test_sync_converges_to_active_cron_workflows(scheduler, store, queue, make_workflow):
    missing = await make_workflow([], trigger=cron("0 * * * *"))
    stale = await make_workflow([], trigger=cron("30 * * * *"))
    unchanged = await make_workflow([], trigger=cron("15 * * * *"))
    deactivated = await make_workflow([], status=WorkflowStatus.DRAFT, trigger=cron("0 0 * * *"))

    await queue.upsert_repeatable(
        scheduler_job_key(stale.id), "45 * * * *", WorkflowJob(workflow_id=stale.id)
    )
    await queue.upsert_repeatable(
        scheduler_job_key(unchanged.id), "15 * * * *", WorkflowJob(workflow_id=unchanged.id)
    )
    await queue.upsert_repeatable(
        scheduler_job_key(deactivated.id), "0 0 * * *", WorkflowJob(workflow_id=deactivated.id)
    )
    await queue.upsert_repeatable(
        scheduler_job_key("deleted-workflow"), "0 0 * * *", WorkflowJob(workflow_id="deleted-workflow")
    )

    await scheduler.sync_scheduler_jobs()

    jobs = {j.key: j.pattern for j in await queue.list_repeatable()}
    assert jobs == {
        scheduler_job_key(missing.id): "0 * * * *",
        scheduler_job_key(stale.id): "30 * * * *",
        scheduler_job_key(unchanged.id): "15 * * * *",
    }

    await scheduler.sync_scheduler_jobs()
    assert {j.key: j.pattern for j in await queue.list_repeatable()} == jobs


@pytest.mark.asyncio
async def test_sync_leaves_foreign_repeatable_jobs_alone(scheduler, queue):
    await queue.upsert_repeatable("cleanup", "0 3 * * *", WorkflowJob(workflow_id="x"))

    await scheduler.sync_scheduler_jobs()

    assert await _keys(queue) == ["cleanup"]


@pytest.mark.asyncio
async def test_queue_failures_are_swallowed(scheduler, queue, make_workflow, monkeypatch):
    workflow = await make_workflow([], trigger=cron("0 * * * *"))

    async def unavailable(*args, **kwargs):
        raise ConnectionError("queue down")

    monkeypatch.setattr(queue, "upsert_repeatable", unavailable)
    monkeypatch.setattr(queue, "remove_repeatable", unavailable)
    monkeypatch.setattr(queue, "list_repeatable", unavailable)

    await scheduler.create_scheduler_job(workflow.id)
    await scheduler.remove_scheduler_job(workflow.id)
    await scheduler.sync_scheduler_jobs()


@pytest.mark.asyncio
async def test_one_bad_pattern_does_not_stop_sync(scheduler, queue, make_workflow):
    broken = await make_workflow([], trigger=cron("every tuesday"))
    good = await make_workflow([], trigger=cron("0 8 * * *"))

    await scheduler.sync_scheduler_jobs()

    assert await _keys(queue) == [scheduler_job_key(good.id)]
    assert await queue.get_repeatable(scheduler_job_key(broken.id)) is None


@pytest.mark.asyncio
async def test_store_failure_is_swallowed(scheduler, store, monkeypatch):
    async def broken(*args, **kwargs):
        raise RuntimeError("database down")

    monkeypatch.setattr(store, "list_workflows", broken)
    monkeypatch.setattr(store, "get_workflow", broken)

    await scheduler.sync_scheduler_jobs()
    await scheduler.create_scheduler_job("wf")
