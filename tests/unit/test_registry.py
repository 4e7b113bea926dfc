"""Step executor registry tests."""

import pytest

from aflow.errors import UnknownStepTypeError
from aflow.steps import StepExecutor, StepExecutorRegistry, build_default_registry
from aflow.steps.database import DatabaseActionExecutor
from aflow.steps.transform import TransformActionExecutor


class NoopExecutor(StepExecutor):
    async def execute(self, config, context):
        return {}


def test_default_registry_contains_builtin_types():
    registry = build_default_registry()

    assert isinstance(registry.resolve("database"), DatabaseActionExecutor)
    assert isinstance(registry.resolve("transform"), TransformActionExecutor)
    assert set(registry) == {"database", "transform"}


def test_extra_executors_are_registered():
    noop = NoopExecutor()
    registry = build_default_registry({"noop": noop})

    assert registry.resolve("noop") is noop
    assert len(registry) == 3


def test_unknown_type_raises():
    registry = StepExecutorRegistry({})

    with pytest.raises(UnknownStepTypeError, match="telegram"):
        registry.resolve("telegram")


def test_registry_is_not_mutated_by_its_source():
    source = {"noop": NoopExecutor()}
    registry = StepExecutorRegistry(source)
    source["other"] = NoopExecutor()

    assert "other" not in registry
    with pytest.raises(TypeError):
        registry["other"] = NoopExecutor()


def test_database_executor_is_not_idempotent():
    assert DatabaseActionExecutor.idempotent is False
    assert TransformActionExecutor.idempotent is True


def test_close_reaches_every_executor():
    closed = []

    class ClosingExecutor(NoopExecutor):
        def close(self):
            closed.append(self)

    first, second = ClosingExecutor(), ClosingExecutor()
    registry = build_default_registry({"a": first, "b": second})

    registry.close()

    assert closed == [first, second]
