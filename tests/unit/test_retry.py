import pytest

from aflow.utils.retry import compute_backoff, schedule_retry


def test_backoff_doubles_each_attempt():
    assert [compute_backoff(n, 100) for n in range(4)] == [100, 200, 400, 800]


def test_zero_initial_delay_never_waits():
    assert compute_backoff(5, 0) == 0


@pytest.mark.asyncio
async def test_schedule_retry_sleeps_in_seconds():
    slept = []

    async def fake_sleep(seconds):
        slept.append(seconds)

    delay = await schedule_retry(2, 250, sleep=fake_sleep)

    assert delay == 1000
    assert slept == [1.0]
