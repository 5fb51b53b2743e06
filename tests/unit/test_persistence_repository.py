import pytest

from gitfix.contracts import FileChangeDetails, ReasoningDetails, TriageDetails, TriageResult
from gitfix.errors import InvalidRequest, NotFound
from gitfix.persistence import (
    InMemoryWorkflowRepository,
    RepoRecord,
    SleepRecord,
    SQLiteWorkflowRepository,
    StepRecord,
    WorkflowInstance,
)
from gitfix.persistence.models import utcnow


@pytest.fixture(params=["inmemory", "sqlite"])
def repo(request, tmp_path):
    if request.param == "sqlite":
        return SQLiteWorkflowRepository(tmp_path / "wf.db")
    return InMemoryWorkflowRepository()


@pytest.mark.asyncio
async def test_instance_crud(repo):
    await repo.save_repo(RepoRecord(id="r1", full_name="acme/web", organization_id="org-1"))
    await repo.create_instance(WorkflowInstance(id="i1", repo_id="r1", title="Crash on save"))

    fetched = await repo.get_instance("i1")
    assert fetched is not None
    assert fetched.status == "analyzing"
    assert fetched.is_active

    triage = TriageResult(classification="fixable", reasoning="clear bug")
    updated = await repo.update_instance("i1", status="fixing", triage_result=triage, retry_count=1)
    assert updated.status == "fixing"
    assert updated.triage_result == triage
    assert updated.updated_at is not None

    fetched = await repo.get_instance("i1")
    assert fetched.triage_result.classification == "fixable"
    assert fetched.retry_count == 1
    assert [wf.id for wf in await repo.list_instances("fixing")] == ["i1"]
    assert await repo.list_instances("resolved") == []

    stored_repo = await repo.get_repo("r1")
    assert stored_repo.organization_id == "org-1"
    assert stored_repo.max_retries == 2


@pytest.mark.asyncio
async def test_create_duplicate_instance_rejected(repo):
    await repo.create_instance(WorkflowInstance(id="i1", repo_id="r1", title="t"))
    with pytest.raises(InvalidRequest):
        await repo.create_instance(WorkflowInstance(id="i1", repo_id="r1", title="t"))


@pytest.mark.asyncio
async def test_update_rejects_unknown_fields_and_instances(repo):
    await repo.create_instance(WorkflowInstance(id="i1", repo_id="r1", title="t"))
    with pytest.raises(InvalidRequest):
        await repo.update_instance("i1", title="renamed")
    with pytest.raises(NotFound):
        await repo.update_instance("missing", status="resolved")


@pytest.mark.asyncio
async def test_activity_append_is_ordered_and_upserts_on_correlation(repo):
    await repo.create_instance(WorkflowInstance(id="i1", repo_id="r1", title="t"))

    first = await repo.append_activity(
        "i1", TriageDetails(classification="fixable", reasoning="r"), correlation_id="triage"
    )
    second = await repo.append_activity(
        "i1", FileChangeDetails(file_path="a.py", status="started"), correlation_id="change-a"
    )
    plain = await repo.append_activity("i1", ReasoningDetails(content="thinking"))
    assert first < second < plain

    again = await repo.append_activity(
        "i1",
        FileChangeDetails(file_path="a.py", diff="+x", status="completed"),
        correlation_id="change-a",
    )
    assert again == second

    records = await repo.list_activity("i1")
    assert [r.type for r in records] == ["triage", "file_change", "reasoning"]
    assert records[1].details.diff == "+x"
    assert records[1].details.status == "completed"
    assert records[0].correlation_id == "triage"
    assert records[2].correlation_id is None


@pytest.mark.asyncio
async def test_steps_and_sleeps_round_trip(repo):
    assert await repo.get_step("i1", "triage") is None
    await repo.save_step(
        StepRecord(instance_id="i1", step_id="triage", result={"x": [1, 2]}, body_name="body")
    )
    step = await repo.get_step("i1", "triage")
    assert step.result == {"x": [1, 2]}
    assert step.body_name == "body"

    wake = utcnow()
    await repo.save_sleep(SleepRecord(instance_id="i1", sleep_id="pause", wake_at=wake))
    sleep = await repo.get_sleep("i1", "pause")
    assert sleep.wake_at == wake
    assert await repo.get_sleep("i1", "other") is None


@pytest.mark.asyncio
async def test_sqlite_survives_reopen(tmp_path):
    path = tmp_path / "wf.db"
    first = SQLiteWorkflowRepository(path)
    await first.create_instance(WorkflowInstance(id="i1", repo_id="r1", title="t"))
    await first.save_step(StepRecord(instance_id="i1", step_id="s", result="done"))
    first.close()

    reopened = SQLiteWorkflowRepository(path)
    assert (await reopened.get_instance("i1")).title == "t"
    assert (await reopened.get_step("i1", "s")).result == "done"
