"""Tests for workflow data contracts."""

from datetime import timezone

import pytest
from pydantic import ValidationError

from aflow.contracts import (
    ErrorPolicy,
    ErrorPolicyMode,
    ExecutionStatus,
    NotificationConfig,
    RetryPolicy,
    Step,
    Trigger,
    Workflow,
    WorkflowJob,
    WorkflowStatus,
)


def test_error_policy_defaults_to_fail():
    assert ErrorPolicy.from_raw(None).mode is ErrorPolicyMode.FAIL
    assert ErrorPolicy.from_raw("pause").mode is ErrorPolicyMode.FAIL
    assert ErrorPolicy.from_raw({"mode": "explode"}).mode is ErrorPolicyMode.FAIL


def test_error_policy_accepts_hyphenated_pause_until():
    policy = ErrorPolicy.from_raw({"mode": "pause-until", "resumeAt": "2030-05-01T08:00:00"})

    assert policy.mode is ErrorPolicyMode.PAUSE_UNTIL
    assert policy.pauses
    assert policy.resume_at.tzinfo is not None
    assert policy.resume_at.astimezone(timezone.utc).hour == 8


def test_error_policy_invalid_resume_time_falls_back_to_fail():
    policy = ErrorPolicy.from_raw({"mode": "pauseUntil", "resumeAt": "not a date"})

    assert policy.mode is ErrorPolicyMode.FAIL
    assert not policy.pauses


def test_plain_pause_drops_resume_time():
    policy = ErrorPolicy.from_raw({"mode": "pause", "resumeAt": "2030-05-01T08:00:00Z"})

    assert policy.mode is ErrorPolicyMode.PAUSE
    assert policy.resume_at is None


def test_retry_policy_merges_partial_reserved_key():
    step = Step(type="x", order=0, config={"_retry": {"initialDelay": 250}})

    policy = step.retry_policy(RetryPolicy(max_retries=5, initial_delay=10))

    assert policy.max_retries == 5
    assert policy.initial_delay == 250
    assert policy.max_attempts == 6


def test_invalid_retry_config_uses_default():
    step = Step(type="x", order=0, config={"_retry": {"maxRetries": -1}})

    assert step.retry_policy() == RetryPolicy()


def test_workflow_sorts_steps_and_rejects_duplicate_orders():
    workflow = Workflow(
        name="wf",
        steps=[Step(type="b", order=2), Step(type="a", order=0)],
    )
    assert [s.order for s in workflow.steps] == [0, 2]
    assert workflow.step_at(2).type == "b"
    assert workflow.step_at(1) is None

    with pytest.raises(ValidationError):
        Workflow(name="dup", steps=[Step(type="a", order=1), Step(type="b", order=1)])


@pytest.mark.parametrize(
    "status, trigger, expected",
    [
        (WorkflowStatus.ACTIVE, Trigger(type="cron", config={"cronExpression": "0 * * * *"}), "0 * * * *"),
        (WorkflowStatus.DRAFT, Trigger(type="cron", config={"cronExpression": "0 * * * *"}), None),
        (WorkflowStatus.PUBLISHED, Trigger(type="cron", config={"cronExpression": "0 * * * *"}), None),
        (WorkflowStatus.ACTIVE, Trigger(type="webhook", config={"cronExpression": "0 * * * *"}), None),
        (WorkflowStatus.ACTIVE, Trigger(type="cron", config={"cronExpression": "   "}), None),
        (WorkflowStatus.ACTIVE, Trigger(type="cron", config={"cronExpression": 5}), None),
        (WorkflowStatus.ACTIVE, Trigger(type="cron", config={}), None),
        (WorkflowStatus.ACTIVE, None, None),
    ],
)
def test_cron_expression_eligibility(status, trigger, expected):
    workflow = Workflow(name="wf", status=status, trigger=trigger)

    assert workflow.cron_expression == expected


def test_notification_subscriptions():
    config = NotificationConfig(workflow_id="wf", type="email", on_failure=False, on_pause=True)

    assert config.subscribes_to(ExecutionStatus.PAUSED)
    assert not config.subscribes_to(ExecutionStatus.FAILED)
    assert not config.subscribes_to(ExecutionStatus.COMPLETED)


def test_job_serializes_with_camel_case_keys():
    job = WorkflowJob(workflow_id="wf-1", trigger_payload={"a": 1}, execution_id="ex-1")

    document = job.to_document()
    assert document["workflowId"] == "wf-1"
    assert document["triggerPayload"] == {"a": 1}
    assert document["executionId"] == "ex-1"
    assert WorkflowJob.from_json(job.to_json()) == job
