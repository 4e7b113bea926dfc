"""Transform step sandbox tests."""

import asyncio
import time

import pytest

from aflow.errors import StepConfigurationError, TransformError
from aflow.steps.transform import TransformActionExecutor


@pytest.fixture(scope="module")
def transform():
    executor = TransformActionExecutor()
    yield executor
    executor.close()


@pytest.mark.asyncio
async def test_expression_result_is_returned(transform):
    output = await transform.execute(
        {"code": "{'total': sum(context['items']), 'name': context['user']['name'].upper()}"},
        {"items": [1, 2, 3], "user": {"name": "ada"}},
    )

    assert output == {"total": 6, "name": "ADA"}


@pytest.mark.asyncio
async def test_statement_body_with_return(transform):
    code = """
doubled = [n * 2 for n in context["items"]]
if not doubled:
    return {"doubled": [], "max": None}
return {"doubled": doubled, "max": max(doubled)}
"""
    output = await transform.execute({"code": code}, {"items": [2, 5]})

    assert output == {"doubled": [4, 10], "max": 10}


@pytest.mark.asyncio
async def test_context_values_can_be_returned(transform):
    output = await transform.execute(
        {"code": "{'copy': context['nested']}"}, {"nested": {"a": [1, {"b": 2}]}}
    )

    assert output == {"copy": {"a": [1, {"b": 2}]}}


@pytest.mark.asyncio
async def test_none_result_contributes_nothing(transform):
    assert await transform.execute({"code": "None"}, {}) == {}


@pytest.mark.asyncio
async def test_context_is_read_only(transform):
    with pytest.raises(TransformError, match="Transform failed"):
        await transform.execute({"code": "context.update({'a': 2})"}, {"a": 1})

    with pytest.raises(TransformError, match="TypeError"):
        await transform.execute({"code": "context['a'] = 2\nreturn {}"}, {"a": 1})


@pytest.mark.parametrize(
    "code",
    [
        "import os\nreturn {}",
        "{'x': __import__('os')}",
        "{'x': ().__class__.__bases__}",
        "{'x': open('/etc/passwd').read()}",
        "{'x': eval('1')}",
        "{'x': '{0.__class__}'.format(1)}",
    ],
)
@pytest.mark.asyncio
async def test_escapes_are_rejected(transform, code):
    with pytest.raises(TransformError):
        await transform.execute({"code": code}, {})


@pytest.mark.asyncio
async def test_non_object_result_is_rejected(transform):
    with pytest.raises(TransformError, match="must return an object"):
        await transform.execute({"code": "[1, 2]"}, {})


@pytest.mark.asyncio
async def test_non_serializable_result_is_rejected(transform):
    with pytest.raises(TransformError, match="JSON"):
        await transform.execute({"code": "{'x': float('nan')}"}, {})


@pytest.mark.asyncio
async def test_runtime_error_is_wrapped(transform):
    with pytest.raises(TransformError, match="ZeroDivisionError"):
        await transform.execute({"code": "{'x': 1 / 0}"}, {})


@pytest.mark.asyncio
async def test_syntax_error_is_reported(transform):
    with pytest.raises(TransformError, match="Invalid transform code"):
        await transform.execute({"code": "return {"}, {})


@pytest.mark.asyncio
async def test_missing_code_is_a_configuration_error(transform):
    with pytest.raises(StepConfigurationError):
        await transform.execute({}, {})
    with pytest.raises(StepConfigurationError):
        await transform.execute({"code": "   "}, {})


@pytest.mark.asyncio
async def test_runaway_snippet_times_out_without_blocking_the_loop():
    transform = TransformActionExecutor(timeout=0.5)
    ticks = 0

    async def ticker():
        nonlocal ticks
        while True:
            await asyncio.sleep(0.01)
            ticks += 1

    try:
        assert await transform.execute({"code": "{'warm': True}"}, {}) == {"warm": True}

        task = asyncio.create_task(ticker())
        started = time.monotonic()
        with pytest.raises(TransformError, match="timed out after 0.5s"):
            await transform.execute({"code": "while True:\n    pass"}, {})
        elapsed = time.monotonic() - started
        task.cancel()

        assert elapsed < 5
        assert ticks > 10

        assert await transform.execute({"code": "{'after': 1}"}, {}) == {"after": 1}
    finally:
        transform.close()


@pytest.mark.asyncio
async def test_heavy_snippet_leaves_the_loop_responsive(transform):
    ticks = 0

    async def ticker():
        nonlocal ticks
        while True:
            await asyncio.sleep(0.01)
            ticks += 1

    await transform.execute({"code": "None"}, {})
    task = asyncio.create_task(ticker())
    output = await transform.execute({"code": "{'n': sum(range(20000000))}"}, {})
    task.cancel()

    assert output == {"n": sum(range(20000000))}
    assert ticks > 0


def test_close_is_idempotent():
    transform = TransformActionExecutor()
    transform.close()
    transform.close()
