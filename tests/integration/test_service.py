"""Inbound and outbound operations of the issue service."""

import pytest
from conftest import SESSION_BUG, FailingAppendRepository, build_service

from gitfix.errors import (
    InvalidRequest,
    InvalidStatus,
    NoDraftAvailable,
    NotFound,
    StorageUnavailable,
    Unauthorized,
)
from gitfix.security import Principal
from gitfix.timeline import Timeline

ACME = Principal(user_id="maintainer", organization_id="acme")
OTHER = Principal(user_id="intruder", organization_id="other")


async def _fixed_issue(service):
    repo = await service.register_repo("acme/web", organization_id="acme")
    instance = await service.open_issue(
        repo.id, "TypeError when session expires", body=SESSION_BUG, issue_number=7
    )
    await service.engine.wait(instance.id)
    return instance.id


@pytest.mark.asyncio
async def test_approve_resolves_without_posting(service, github):
    instance_id = await _fixed_issue(service)

    approved = await service.approve(ACME, instance_id)

    assert approved.status == "resolved"
    records = await service.list_activity(instance_id)
    assert "comment_posted" not in [r.type for r in records]
    assert github.comments == []


@pytest.mark.asyncio
async def test_approve_and_post_records_one_comment(service, github):
    instance_id = await _fixed_issue(service)

    approved = await service.approve_and_post(ACME, instance_id)

    assert approved.status == "resolved"
    records = await service.list_activity(instance_id)
    posted = [r for r in records if r.type == "comment_posted"]
    assert len(posted) == 1
    assert posted[0].details.comment == approved.issue_comment
    assert posted[0].details.pr_url == approved.pr_url
    assert len(github.comments) == 1
    assert github.comments[0].issue_number == 7

    with pytest.raises(InvalidStatus):
        await service.approve_and_post(ACME, instance_id)
    assert len(github.comments) == 1


@pytest.mark.asyncio
async def test_retried_approval_posts_comment_once(transport, github):
    service = build_service(FailingAppendRepository("comment_posted"), transport, github)
    instance_id = await _fixed_issue(service)

    with pytest.raises(StorageUnavailable):
        await service.approve_and_post(ACME, instance_id)
    assert (await service.get_instance(instance_id)).status == "awaiting_review"
    assert len(github.comments) == 1

    approved = await service.approve_and_post(ACME, instance_id)

    assert approved.status == "resolved"
    assert len(github.comments) == 1
    posted = [r for r in await service.list_activity(instance_id) if r.type == "comment_posted"]
    assert len(posted) == 1
    assert posted[0].details.status == "completed"
    assert posted[0].details.comment_url == github.comments[0].url


@pytest.mark.asyncio
async def test_approve_and_post_without_draft(service):
    repo = await service.register_repo("acme/web", organization_id="acme")
    instance = await service.open_issue(repo.id, "Crash", body="src/a.ts crashes", start=False)

    with pytest.raises(NoDraftAvailable):
        await service.approve_and_post(ACME, instance.id)
    with pytest.raises(InvalidStatus):
        await service.approve(ACME, instance.id)


@pytest.mark.asyncio
async def test_unauthorized_callers_cause_no_side_effects(service, github):
    instance_id = await _fixed_issue(service)

    with pytest.raises(Unauthorized):
        await service.approve_and_post(OTHER, instance_id)
    with pytest.raises(Unauthorized):
        await service.approve(None, instance_id)

    assert (await service.get_instance(instance_id)).status == "awaiting_review"
    assert github.comments == []


@pytest.mark.asyncio
async def test_unknown_instances_raise_not_found(service):
    for call in (
        service.get_instance("nope"),
        service.list_activity("nope"),
        service.enqueue("nope"),
        service.approve(ACME, "nope"),
        service.approve_and_post(ACME, "nope"),
        service.get_subscription_token(ACME, "nope"),
    ):
        with pytest.raises(NotFound):
            await call
    with pytest.raises(NotFound):
        await service.open_issue("missing-repo", "t")


@pytest.mark.asyncio
async def test_second_active_instance_for_issue_rejected(service):
    repo = await service.register_repo("acme/web", organization_id="acme")
    await service.open_issue(repo.id, "Crash", body="x", issue_number=3, start=False)
    with pytest.raises(InvalidStatus):
        await service.open_issue(repo.id, "Crash again", body="x", issue_number=3, start=False)


@pytest.mark.asyncio
async def test_token_requires_active_instance_and_authorization(service):
    repo = await service.register_repo("acme/web", organization_id="acme")
    instance = await service.open_issue(repo.id, "Crash", body="x", start=False)

    token = await service.get_subscription_token(ACME, instance.id, ["reasoning"])
    assert token.channel == f"issue:{instance.id}"
    assert token.topics == ["reasoning"]
    default = await service.get_subscription_token(ACME, instance.id)
    assert "done" in default.topics

    with pytest.raises(Unauthorized):
        await service.get_subscription_token(OTHER, instance.id)
    with pytest.raises(InvalidRequest):
        await service.get_subscription_token(ACME, instance.id, ["gossip"])

    await service.repository.update_instance(instance.id, status="resolved")
    with pytest.raises(InvalidStatus):
        await service.get_subscription_token(ACME, instance.id)


@pytest.mark.asyncio
async def test_subscribe_rejects_forged_token(service):
    with pytest.raises(Unauthorized):
        await service.subscribe("forged")


@pytest.mark.asyncio
async def test_live_channel_agrees_with_log(service):
    repo = await service.register_repo("acme/web", organization_id="acme")
    instance = await service.open_issue(
        repo.id, "TypeError when session expires", body=SESSION_BUG, start=False
    )
    token = await service.get_subscription_token(ACME, instance.id)
    subscription = await service.subscribe(token.token, lifespan=10)

    await service.enqueue(instance.id)
    messages = []
    async with subscription:
        async for message in subscription:
            messages.append(message)
            if message.correlation_id == "done-summary" and message.data.status == "completed":
                break
    await service.engine.wait(instance.id)

    records = await service.list_activity(instance.id)
    completed = {
        m.correlation_id: m.data for m in messages if m.data.status in ("completed", "failed")
    }
    for record in records:
        assert completed[record.correlation_id] == record.details

    # Folding the live stream gives the same rows as the durable snapshot
    live = Timeline().apply_all(messages)
    assert [e.data for e in live.entries] == [r.details for r in records]
    assert any(m.data.status == "streaming" for m in messages)


@pytest.mark.asyncio
async def test_topic_scoped_subscription(service):
    repo = await service.register_repo("acme/web", organization_id="acme")
    instance = await service.open_issue(repo.id, "Question: how do I deploy?", body="?", start=False)
    token = await service.get_subscription_token(ACME, instance.id, ["done"])
    subscription = await service.subscribe(token.token, lifespan=5)

    await service.enqueue(instance.id)
    async with subscription:
        async for message in subscription:
            assert message.topic == "done"
            break
