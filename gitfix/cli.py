"""Command line interface for gitfix workflows."""

from __future__ import annotations

import asyncio
from typing import Any, Coroutine, List, Optional, TypeVar

import typer

from gitfix.config import load_config
from gitfix.errors import GitfixError
from gitfix.security import Principal
from gitfix.service import IssueService, create_service

T = TypeVar("T")

app = typer.Typer(help="CLI for gitfix issue workflows")

# Command groups
repo_app = typer.Typer(help="Commands for managing connected repositories")
issue_app = typer.Typer(help="Commands for triggering and inspecting issue workflows")
worker_app = typer.Typer(help="Commands for running workflow workers")

app.add_typer(repo_app, name="repo")
app.add_typer(issue_app, name="issue")
app.add_typer(worker_app, name="worker")

_state: dict[str, Optional[str]] = {"config": None}


@app.callback()
def main(
    config: Optional[str] = typer.Option(
        None, "--config", "-c", help="Path to a YAML config file (default: GITFIX_CONFIG or config.yaml)"
    ),
) -> None:
    """gitfix CLI entry point."""
    _state["config"] = config


def _service() -> IssueService:
    return create_service(load_config(_state["config"]))


def _run(coro: Coroutine[Any, Any, T]) -> T:
    """Run ``coro`` and turn gitfix errors into a red message and exit code 1."""
    try:
        return asyncio.run(coro)
    except GitfixError as e:
        typer.secho(f"{type(e).__name__}: {e}", fg=typer.colors.RED)
        raise typer.Exit(code=1)


@repo_app.command("add")
def repo_add(
    full_name: str,
    org: Optional[str] = typer.Option(None, help="Owning organization id"),
    max_retries: Optional[int] = typer.Option(None, help="Remediation attempts after the first"),
    repo_id: Optional[str] = typer.Option(None, "--id", help="Explicit repository id"),
) -> None:
    """Connect a GitHub repository (``owner/name``)."""

    async def _add():
        return await _service().register_repo(
            full_name, organization_id=org, max_retries=max_retries, repo_id=repo_id
        )

    repo = _run(_add())
    typer.echo(f"{repo.id}\t{repo.full_name}")


@issue_app.command("open")
def issue_open(
    repo_id: str,
    title: str,
    body: Optional[str] = typer.Option(None, help="Issue body"),
    number: Optional[int] = typer.Option(None, help="GitHub issue number"),
    url: Optional[str] = typer.Option(None, help="GitHub issue URL"),
    wait: bool = typer.Option(True, help="Run the workflow to completion before exiting"),
) -> None:
    """
    Record a new issue and start its triage-and-fix workflow.

    Example:
        gitfix issue open <repo-id> "TypeError when session expires" --body "..."
    """

    async def _open():
        service = _service()
        instance = await service.open_issue(
            repo_id, title, body=body, issue_number=number, url=url
        )
        if wait:
            await service.engine.wait(instance.id)
            instance = await service.get_instance(instance.id)
        return instance

    instance = _run(_open())
    typer.echo(f"{instance.id}\t{instance.status}")


@issue_app.command("list")
def issue_list(status: Optional[str] = typer.Option(None, help="Only show this status")) -> None:
    """List workflow instances with their status."""
    instances = _run(_service().list_instances(status))
    if not instances:
        typer.echo("No issues found")
        return
    for instance in instances:
        typer.echo(f"{instance.id}\t{instance.status}\t{instance.title}")


@issue_app.command("show")
def issue_show(instance_id: str) -> None:
    """Show an instance and its activity log, oldest first."""

    async def _show():
        service = _service()
        return await service.get_instance(instance_id), await service.list_activity(instance_id)

    instance, records = _run(_show())
    typer.echo(f"Issue {instance.id}: {instance.status}")
    typer.echo(f"Title: {instance.title}")
    if instance.triage_result:
        typer.echo(f"Triage: {instance.triage_result.classification}")
    if instance.pr_url:
        typer.echo(f"Pull request: {instance.pr_url}")
    if instance.fix_summary:
        typer.echo(f"Summary: {instance.fix_summary}")
    for record in records:
        typer.echo(f"- [{record.id}] {record.type}: {record.details.model_dump_json(exclude={'type'})}")


@issue_app.command("approve")
def issue_approve(
    instance_id: str,
    user: str = typer.Option(..., help="Approving user id"),
    org: str = typer.Option(..., help="Approving user's organization id"),
    post: bool = typer.Option(False, help="Post the drafted comment on the issue"),
) -> None:
    """Approve a fix awaiting review, optionally posting the drafted comment."""
    principal = Principal(user_id=user, organization_id=org)

    async def _approve():
        service = _service()
        if post:
            return await service.approve_and_post(principal, instance_id)
        return await service.approve(principal, instance_id)

    instance = _run(_approve())
    typer.secho(f"{instance.id}\t{instance.status}", fg=typer.colors.GREEN)


@issue_app.command("token")
def issue_token(
    instance_id: str,
    user: str = typer.Option(..., help="Requesting user id"),
    org: str = typer.Option(..., help="Requesting user's organization id"),
    topic: Optional[List[str]] = typer.Option(None, help="Topic to grant; repeat for several"),
) -> None:
    """Issue a subscription token for an instance's live channel."""
    principal = Principal(user_id=user, organization_id=org)
    token = _run(_service().get_subscription_token(principal, instance_id, topic or None))
    typer.echo(token.token)
    typer.echo(f"channel={token.channel} expires_at={token.expires_at.isoformat()}")


@issue_app.command("watch")
def issue_watch(
    instance_id: str,
    user: str = typer.Option(..., help="Requesting user id"),
    org: str = typer.Option(..., help="Requesting user's organization id"),
    lifespan: Optional[float] = typer.Option(None, help="Stop watching after this many seconds"),
) -> None:
    """Print live messages of a running instance (needs a shared transport such as Redis)."""
    principal = Principal(user_id=user, organization_id=org)

    async def _watch():
        service = _service()
        await service.transport.connect()
        try:
            token = await service.get_subscription_token(principal, instance_id)
            async with await service.subscribe(token.token, lifespan=lifespan) as subscription:
                async for message in subscription:
                    status = message.data.status or "-"
                    typer.echo(f"{message.topic}\t{status}\t{message.correlation_id or ''}")
        finally:
            await service.transport.disconnect()

    _run(_watch())


@worker_app.command("resume")
def worker_resume(
    include_stalled: bool = typer.Option(
        False, help="Also restart active instances that are neither suspended nor running"
    ),
) -> None:
    """Resume suspended (and optionally stalled) instances and run them to completion."""

    async def _resume():
        service = _service()
        resumed = await service.engine.resume_pending(include_stalled=include_stalled)
        for instance_id in resumed:
            await service.engine.wait(instance_id)
        return resumed

    resumed = _run(_resume())
    if not resumed:
        typer.echo("Nothing to resume")
        return
    for instance_id in resumed:
        typer.echo(f"Resumed {instance_id}")


if __name__ == "__main__":
    app()
