"""Workflow engine tests with small workflow definitions."""

import asyncio

import pytest
from conftest import FakeClock

from gitfix.contracts import DoneDetails
from gitfix.engine import WorkflowEngine
from gitfix.errors import NotFound
from gitfix.persistence import InMemoryWorkflowRepository, WorkflowInstance


class TwoStepWorkflow:
    def __init__(self) -> None:
        self.calls: list[str] = []

    async def __call__(self, ctx):
        async def first():
            self.calls.append("first")
            return 1

        async def second():
            self.calls.append("second")
            await ctx.log.append(ctx.instance_id, DoneDetails(summary="ok"), correlation_id="second")
            await ctx.repository.update_instance(ctx.instance_id, status="awaiting_review")
            return 2

        a = await ctx.run("first", first)
        await ctx.sleep("wait", "1h")
        b = await ctx.run("second", second)
        return a + b


async def _repository(*ids):
    repository = InMemoryWorkflowRepository()
    for instance_id in ids:
        await repository.create_instance(WorkflowInstance(id=instance_id, repo_id="r1", title="t"))
    return repository


@pytest.mark.asyncio
async def test_long_sleep_suspends_and_resumes_without_repeating_steps():
    repository = await _repository("i1")
    clock = FakeClock()
    workflow = TwoStepWorkflow()
    engine = WorkflowEngine(
        repository, workflow, clock=clock, sleeper=clock.sleep, max_inline_sleep=60
    )

    assert await engine.run("i1") is None
    suspended = await repository.get_instance("i1")
    assert suspended.resume_at is not None
    assert workflow.calls == ["first"]

    # Not due yet
    assert await engine.resume_pending() == []

    clock.advance(3600)
    assert await engine.resume_pending() == ["i1"]
    assert await engine.wait("i1") == 3

    finished = await repository.get_instance("i1")
    assert finished.status == "awaiting_review"
    assert finished.resume_at is None
    assert workflow.calls == ["first", "second"]


@pytest.mark.asyncio
async def test_inactive_instance_is_not_run():
    repository = await _repository("i1")
    await repository.update_instance("i1", status="resolved")
    workflow = TwoStepWorkflow()
    engine = WorkflowEngine(repository, workflow)

    assert await engine.run("i1") is None
    assert workflow.calls == []


@pytest.mark.asyncio
async def test_unknown_instance_raises_not_found():
    engine = WorkflowEngine(InMemoryWorkflowRepository(), TwoStepWorkflow())
    with pytest.raises(NotFound):
        await engine.run("missing")
    with pytest.raises(NotFound):
        await engine.enqueue("missing")


@pytest.mark.asyncio
async def test_duplicate_enqueue_returns_running_task():
    repository = await _repository("i1")
    gate = asyncio.Event()
    runs = 0

    async def slow(ctx):
        nonlocal runs
        runs += 1
        await gate.wait()
        return "done"

    engine = WorkflowEngine(repository, slow)
    first = await engine.enqueue("i1")
    second = await engine.enqueue("i1")
    assert first is second
    assert engine.is_running("i1")

    gate.set()
    assert await engine.wait("i1") == "done"
    assert runs == 1
    assert not engine.is_running("i1")


@pytest.mark.asyncio
async def test_finished_runs_are_not_retained():
    repository = await _repository("i1", "i2")

    async def quick(ctx):
        return ctx.instance_id

    engine = WorkflowEngine(repository, quick)
    for instance_id in ("i1", "i2"):
        await engine.enqueue(instance_id)
        assert await engine.wait(instance_id) == instance_id
    await asyncio.sleep(0)

    assert engine._tasks == {}
    assert await engine.wait("i1") is None


@pytest.mark.asyncio
async def test_stalled_instances_resume_only_when_requested():
    repository = await _repository("i1", "i2")
    await repository.update_instance("i2", status="escalated")
    clock = FakeClock()
    engine = WorkflowEngine(
        repository, TwoStepWorkflow(), clock=clock, sleeper=clock.sleep, max_inline_sleep=None
    )

    assert await engine.resume_pending() == []
    assert await engine.resume_pending(include_stalled=True) == ["i1"]
    assert await engine.wait("i1") == 3
