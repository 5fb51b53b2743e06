"""Step executor tests: at-most-once execution and replay."""

import pytest
from pydantic import BaseModel

from gitfix.engine import StepExecutor
from gitfix.errors import StepError, StepIdConflict
from gitfix.persistence import InMemoryWorkflowRepository


class Counter:
    def __init__(self) -> None:
        self.calls = 0

    async def body(self):
        self.calls += 1
        return {"calls": self.calls}


@pytest.mark.asyncio
async def test_completed_step_is_not_reexecuted_after_restart():
    repository = InMemoryWorkflowRepository()
    counter = Counter()

    first = await StepExecutor(repository).run("i1", "triage", counter.body)
    # A fresh executor over the same store behaves like a restarted process
    replay = await StepExecutor(repository).run("i1", "triage", counter.body)

    assert first == replay == {"calls": 1}
    assert counter.calls == 1


@pytest.mark.asyncio
async def test_steps_are_scoped_per_instance():
    repository = InMemoryWorkflowRepository()
    counter = Counter()
    executor = StepExecutor(repository)

    await executor.run("i1", "triage", counter.body)
    await executor.run("i2", "triage", counter.body)

    assert counter.calls == 2


@pytest.mark.asyncio
async def test_failed_step_persists_nothing_and_is_not_retried():
    repository = InMemoryWorkflowRepository()
    calls = 0

    async def failing():
        nonlocal calls
        calls += 1
        raise StepError("tool crashed", step_id="clone-repo")

    executor = StepExecutor(repository)
    with pytest.raises(StepError):
        await executor.run("i1", "clone-repo", failing)

    assert calls == 1
    assert await repository.get_step("i1", "clone-repo") is None


@pytest.mark.asyncio
async def test_results_are_normalized_to_json_values():
    class Result(BaseModel):
        path: str
        files: tuple[str, ...]

    async def body():
        return Result(path="/tmp/x", files=("a.py",))

    repository = InMemoryWorkflowRepository()
    first = await StepExecutor(repository).run("i1", "s", body)
    replay = await StepExecutor(repository).run("i1", "s", body)
    assert first == replay == {"path": "/tmp/x", "files": ["a.py"]}


@pytest.mark.asyncio
async def test_debug_mode_detects_step_id_reused_for_another_body():
    repository = InMemoryWorkflowRepository()
    counter = Counter()

    async def other():
        return "other"

    await StepExecutor(repository, debug=True).run("i1", "triage", counter.body)

    with pytest.raises(StepIdConflict):
        await StepExecutor(repository, debug=True).run("i1", "triage", other)
    # Outside debug mode the memoized value wins
    assert await StepExecutor(repository).run("i1", "triage", other) == {"calls": 1}
