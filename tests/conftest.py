"""Shared fixtures: in-memory backends and scriptable step executors."""

from typing import Any, Callable, Dict, List

import pytest

from aflow.contracts import Step, Trigger, Workflow, WorkflowStatus
from aflow.execute import WorkflowExecutor
from aflow.persistence import InMemoryExecutionStore
from aflow.queue import InMemoryJobQueue
from aflow.steps import StepExecutor, StepExecutorRegistry


class ScriptedExecutor(StepExecutor):
    """Executor whose behaviour is a plain function of (config, context)."""

    def __init__(self, fn: Callable[[Dict[str, Any], Dict[str, Any]], Any]) -> None:
        self.fn = fn
        self.calls: List[Dict[str, Any]] = []

    async def execute(self, config, context):
        self.calls.append({"config": config, "context": context})
        return self.fn(config, context)


def _fail(config, context):
    raise RuntimeError(config.get("message", "boom"))


@pytest.fixture
def store():
    return InMemoryExecutionStore()


@pytest.fixture
def queue():
    return InMemoryJobQueue(poll_interval=0.01)


@pytest.fixture
def sleeps():
    """Records backoff delays instead of sleeping."""
    return []


@pytest.fixture
def executors():
    return {
        "echo": ScriptedExecutor(lambda config, context: {}),
        "append": ScriptedExecutor(
            lambda config, context: {config.get("field", "b"): config.get("value", "appended")}
        ),
        "fail": ScriptedExecutor(_fail),
    }


@pytest.fixture
def engine(store, executors, sleeps):
    async def record_sleep(seconds):
        sleeps.append(seconds)

    return WorkflowExecutor(
        store, StepExecutorRegistry(executors), sleep=record_sleep
    )


@pytest.fixture
def make_workflow(store):
    """Save a workflow built from ``(type, config)`` pairs at orders 0..n."""

    async def _make(
        steps,
        status: WorkflowStatus = WorkflowStatus.ACTIVE,
        trigger: Trigger | None = None,
        name: str = "test workflow",
    ) -> Workflow:
        workflow = Workflow(
            name=name,
            status=status,
            trigger=trigger,
            steps=[
                Step(type=step_type, config=config, order=order)
                for order, (step_type, config) in enumerate(steps)
            ],
        )
        await store.save_workflow(workflow)
        return workflow

    return _make
