"""Crash and suspension recovery of the triage-and-fix workflow."""

import pytest
from conftest import SESSION_BUG, FailingAppendRepository, FakeClock, build_service

from gitfix.agents import SimulatedFixAgent
from gitfix.errors import StorageUnavailable
from gitfix.persistence import InMemoryWorkflowRepository, SQLiteWorkflowRepository, StepRecord


class FlakyRepository(InMemoryWorkflowRepository):
    """Fails to memoize one step, like a database outage right after its side effects."""

    def __init__(self, fail_step: str) -> None:
        super().__init__()
        self.fail_step = fail_step
        self.failing = True

    async def save_step(self, record: StepRecord) -> None:
        if self.failing and record.step_id == self.fail_step:
            raise StorageUnavailable("database went away")
        await super().save_step(record)


class CountingAgent(SimulatedFixAgent):
    def __init__(self) -> None:
        super().__init__()
        self.triage_calls = 0

    async def triage(self, issue):
        self.triage_calls += 1
        return await super().triage(issue)


@pytest.mark.asyncio
async def test_storage_outage_leaves_durable_state_and_resumes_cleanly(transport, github):
    repository = FlakyRepository(fail_step="clone-repo")
    agent = CountingAgent()
    service = build_service(repository, transport, github, agent=agent)
    repo = await service.register_repo("acme/web", organization_id="acme")
    instance = await service.open_issue(
        repo.id, "TypeError when session expires", body=SESSION_BUG, start=False
    )

    with pytest.raises(StorageUnavailable):
        await service.engine.run(instance.id)

    stalled = await service.get_instance(instance.id)
    assert stalled.status == "fixing"
    assert [r.type for r in await service.list_activity(instance.id)] == ["triage", "repo_clone"]

    repository.failing = False
    assert await service.engine.resume_pending(include_stalled=True) == [instance.id]
    await service.engine.wait(instance.id)

    finished = await service.get_instance(instance.id)
    assert finished.status == "awaiting_review"
    assert agent.triage_calls == 1
    types = [r.type for r in await service.list_activity(instance.id)]
    # The replayed clone upserted its record instead of appending a second one
    assert types.count("triage") == 1
    assert types.count("repo_clone") == 1


@pytest.mark.parametrize(
    "title, body, failing_attempts, terminal_type, final_status",
    [
        ("TypeError when session expires", SESSION_BUG, 0, "done", "awaiting_review"),
        ("Refactor the auth module", "Migrate sessions to the new store.", 0, "done", "too_complex"),
        ("TypeError when session expires", SESSION_BUG, 10, "escalated", "escalated"),
    ],
)
@pytest.mark.asyncio
async def test_failed_terminal_record_keeps_instance_resumable(
    transport, github, title, body, failing_attempts, terminal_type, final_status
):
    repository = FailingAppendRepository(terminal_type)
    agent = SimulatedFixAgent(failing_attempts=failing_attempts)
    service = build_service(repository, transport, github, agent=agent)
    repo = await service.register_repo("acme/web", organization_id="acme", max_retries=0)
    instance = await service.open_issue(repo.id, title, body=body, start=False)

    with pytest.raises(StorageUnavailable):
        await service.engine.run(instance.id)

    stalled = await service.get_instance(instance.id)
    assert stalled.is_active
    assert terminal_type not in [r.type for r in await service.list_activity(instance.id)]

    assert await service.engine.resume_pending(include_stalled=True) == [instance.id]
    await service.engine.wait(instance.id)

    finished = await service.get_instance(instance.id)
    assert finished.status == final_status
    types = [r.type for r in await service.list_activity(instance.id)]
    assert types.count(terminal_type) == 1
    assert types[-1] == terminal_type


class CrashingAgent(CountingAgent):
    async def plan(self, issue, attempt, previous_error):
        raise RuntimeError("worker killed")


@pytest.mark.asyncio
async def test_restart_with_new_process_objects_on_sqlite(tmp_path, transport, github):
    path = tmp_path / "wf.db"
    crashing = CrashingAgent()
    first = build_service(SQLiteWorkflowRepository(path), transport, github, agent=crashing)
    repo = await first.register_repo("acme/web", organization_id="acme")
    instance = await first.open_issue(
        repo.id, "TypeError when session expires", body=SESSION_BUG, start=False
    )
    with pytest.raises(RuntimeError):
        await first.engine.run(instance.id)
    assert crashing.triage_calls == 1

    # A new process: fresh repository connection, engine and agent
    agent = CountingAgent()
    second = build_service(SQLiteWorkflowRepository(path), transport, github, agent=agent)
    await second.enqueue(instance.id)
    await second.engine.wait(instance.id)

    assert agent.triage_calls == 0
    finished = await second.get_instance(instance.id)
    assert finished.status == "awaiting_review"
    assert finished.triage_result.classification == "fixable"


@pytest.mark.asyncio
async def test_suspended_workflow_completes_across_resumes(transport, github):
    repository = InMemoryWorkflowRepository()
    clock = FakeClock()
    service = build_service(
        repository,
        transport,
        github,
        clock=clock,
        sleeper=clock.sleep,
        time_scale=1,
        max_inline_sleep=1.6,
    )
    repo = await service.register_repo("acme/web", organization_id="acme")
    instance = await service.open_issue(repo.id, "TypeError when session expires", body=SESSION_BUG)
    await service.engine.wait(instance.id)

    suspended = await service.get_instance(instance.id)
    assert suspended.status == "fixing"
    assert suspended.resume_at is not None

    for _ in range(100):
        current = await service.get_instance(instance.id)
        if not current.is_active:
            break
        clock.advance(10)
        for instance_id in await service.engine.resume_pending():
            await service.engine.wait(instance_id)

    finished = await service.get_instance(instance.id)
    assert finished.status == "awaiting_review"
    assert finished.resume_at is None
    records = await service.list_activity(instance.id)
    assert len({r.correlation_id for r in records}) == len(records)
