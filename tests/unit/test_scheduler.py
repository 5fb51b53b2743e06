"""Scheduler and duration tests."""

from datetime import timedelta

import pytest
from conftest import FakeClock

from gitfix.engine import Scheduler, parse_duration
from gitfix.errors import WorkflowSuspended
from gitfix.persistence import InMemoryWorkflowRepository


@pytest.mark.parametrize(
    "value, seconds",
    [
        (5, 5),
        (1.5, 1.5),
        ("250ms", 0.25),
        ("1.5s", 1.5),
        ("2m", 120),
        ("1h", 3600),
        ("3d", 259200),
        ("7", 7),
        (timedelta(minutes=1), 60),
    ],
)
def test_parse_duration(value, seconds):
    assert parse_duration(value).total_seconds() == pytest.approx(seconds)


@pytest.mark.parametrize("value", ["soon", "1w", "-1s", -3])
def test_parse_duration_rejects_invalid(value):
    with pytest.raises(ValueError):
        parse_duration(value)


@pytest.mark.asyncio
async def test_sleep_resumes_with_remaining_time_after_restart():
    repository = InMemoryWorkflowRepository()
    clock = FakeClock()

    # First process records the wake time, then "crashes" halfway through
    wake_at = await Scheduler(repository, clock=clock).wake_time("i1", "pause", "10s")
    clock.advance(5)

    restarted = Scheduler(repository, clock=clock, sleeper=clock.sleep)
    await restarted.sleep("i1", "pause", "10s")

    assert clock.slept == [pytest.approx(5)]
    assert clock() == wake_at


@pytest.mark.asyncio
async def test_elapsed_sleep_returns_immediately():
    repository = InMemoryWorkflowRepository()
    clock = FakeClock()
    scheduler = Scheduler(repository, clock=clock, sleeper=clock.sleep)

    await scheduler.sleep("i1", "pause", "2s")
    await scheduler.sleep("i1", "pause", "2s")

    assert clock.slept == [2]


@pytest.mark.asyncio
async def test_long_sleep_suspends_instead_of_blocking():
    repository = InMemoryWorkflowRepository()
    clock = FakeClock()
    scheduler = Scheduler(repository, clock=clock, sleeper=clock.sleep, max_inline_sleep=60)

    with pytest.raises(WorkflowSuspended) as info:
        await scheduler.sleep("i1", "wait-for-ci", "1h")

    assert info.value.wake_at == clock() + timedelta(hours=1)
    assert clock.slept == []

    clock.advance(3600)
    await scheduler.sleep("i1", "wait-for-ci", "1h")
    assert clock.slept == []
