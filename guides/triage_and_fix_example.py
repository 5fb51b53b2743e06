"""Triage-and-fix walkthrough: open an issue, watch it live, then approve the fix."""

import asyncio

from gitfix import Principal, Timeline, create_service
from gitfix.config import GitfixConfig, WorkflowConfig

ISSUE_BODY = (
    "After the session expires, calling `getUser()` in src/auth/session.ts throws "
    "TypeError: Cannot read properties of undefined (reading 'id'). "
    "There is no null check before the user is dereferenced."
)


async def main():
    print("Running triage-and-fix with gitfix...")
    # Speed up the simulated pacing; use time_scale=1.0 to watch it in real time
    config = GitfixConfig(workflow=WorkflowConfig(time_scale=0.1))
    service = create_service(config)
    maintainer = Principal(user_id="maintainer", organization_id="acme")

    repo = await service.register_repo("acme/web", organization_id="acme")
    instance = await service.open_issue(
        repo.id, "TypeError when session expires", body=ISSUE_BODY, issue_number=42, start=False
    )

    # Subscribe before starting so no live message is missed
    token = await service.get_subscription_token(maintainer, instance.id)
    subscription = await service.subscribe(token.token, lifespan=120)
    await service.enqueue(instance.id)

    timeline = Timeline(await service.list_activity(instance.id))
    async with subscription:
        async for message in subscription:
            entry = timeline.apply(message)
            if not entry.in_progress:
                print(f"{message.topic:<16} {message.correlation_id}")
            if message.topic in ("done", "escalated") and message.data.status == "completed":
                break

    await service.engine.wait(instance.id)
    finished = await service.get_instance(instance.id)
    print("Persisted status:", finished.status)
    print("Pull request:", finished.pr_url)

    if finished.status == "awaiting_review":
        resolved = await service.approve_and_post(maintainer, instance.id)
        print("After approval:", resolved.status)


if __name__ == "__main__":
    asyncio.run(main())
