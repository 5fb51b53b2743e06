"""The triage-and-fix workflow definition."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from ..agents import (
    EditFileAction,
    FixAction,
    FixAgent,
    FixPlan,
    FixReport,
    ReadFileAction,
    ReasonAction,
    RunCommandAction,
    WebSearchAction,
)
from ..constants import UNFIXABLE_STATUSES
from ..contracts import (
    ActivityDetails,
    CiStatusDetails,
    CommentDraftedDetails,
    DoneDetails,
    ErrorDetails,
    EscalatedDetails,
    FileReadDetails,
    PrCreatedDetails,
    RepoCloneDetails,
    RunCommandDetails,
    TriageDetails,
    TriageResult,
    WebSearchDetails,
)
from ..engine import WorkflowContext
from ..engine.durations import Duration
from ..github import GitHubClient
from ..utils.retry import compute_backoff
from .activities import (
    emit_activity,
    emit_tool_activity,
    stream_file_change,
    stream_reasoning,
    stream_summary,
)

logger = logging.getLogger(__name__)

SUMMARY_STREAM_ID = "done-summary"


def _started_details(action: FixAction) -> ActivityDetails:
    if isinstance(action, ReadFileAction):
        return FileReadDetails(file_path=action.file_path)
    if isinstance(action, WebSearchAction):
        return WebSearchDetails(query=action.query)
    if isinstance(action, RunCommandAction):
        return RunCommandDetails(command=action.command)
    raise ValueError(f"No tool details for action kind {action.kind!r}")


class TriageAndFixWorkflow:
    """Classifies an issue and, when fixable, drives it to a reviewed fix.

    Statuses move ``analyzing -> fixing -> awaiting_review`` on success,
    ``analyzing -> too_complex | skipped`` for issues that are not fixed, and
    ``fixing -> escalated`` once every remediation attempt has failed.
    Every side effect happens inside a memoized step, so the definition can be
    replayed from the top after a crash or a suspension.
    """

    name = "triage-and-fix"

    def __init__(
        self,
        agent: FixAgent,
        github: GitHubClient,
        default_max_retries: int = 2,
        pause: Duration = "0.5s",
    ) -> None:
        self.agent = agent
        self.github = github
        self.default_max_retries = default_max_retries
        self.pause = pause

    async def __call__(self, ctx: WorkflowContext) -> Dict[str, Any]:
        repo = await ctx.repository.get_repo(ctx.instance.repo_id)
        repository = repo.full_name if repo else ctx.instance.repo_id
        max_retries = repo.max_retries if repo else self.default_max_retries

        triage = await self._triage(ctx)
        if triage.classification != "fixable":
            return await self._finish_unfixable(ctx, triage)

        await ctx.sleep("pause-after-triage", "1.5s")
        clone = await emit_tool_activity(
            ctx,
            "clone-repo",
            RepoCloneDetails(repository=repository),
            lambda: self._clone(repository),
            duration="2s",
        )
        if clone.error:
            await emit_activity(ctx, "error-clone-repo", ErrorDetails(message=clone.error, status="completed"))
            return await self._escalate(ctx, f"Could not clone {repository}: {clone.error}", 0)
        await ctx.sleep("pause-after-clone", "1s")

        changed_files, error, attempts = await self._fix(ctx, max_retries)
        if error is not None:
            return await self._escalate(
                ctx, f"Fix failed after {attempts} attempt(s): {error}", attempts
            )

        report = FixReport.model_validate(
            await ctx.run("summarize", lambda: self.agent.summarize(ctx.instance, changed_files))
        )
        pr = await emit_tool_activity(
            ctx,
            "create-pr",
            PrCreatedDetails(title=report.pr_title),
            lambda: self._open_pull_request(ctx, repository, report),
        )
        if pr.error:
            await emit_activity(ctx, "error-create-pr", ErrorDetails(message=pr.error, status="completed"))
            return await self._escalate(ctx, f"Could not open a pull request: {pr.error}", attempts)
        await ctx.sleep("pause-after-pr", self.pause)

        ci = await emit_tool_activity(
            ctx,
            "ci-check",
            CiStatusDetails(pr_number=pr.details.number, conclusion="pending"),
            lambda: self.github.get_ci_status(repository, pr.details.number),
            duration="3s",
        )
        if ci.error or ci.details.conclusion == "failed":
            message = ci.error or f"CI failed on pull request #{pr.details.number}"
            await emit_activity(ctx, "error-ci-check", ErrorDetails(message=message, status="completed"))
            return await self._escalate(ctx, message, attempts)

        await emit_activity(
            ctx,
            "comment-drafted",
            CommentDraftedDetails(comment=report.comment, pr_url=pr.details.url, status="completed"),
        )
        await ctx.sleep("pause-before-summary", self.pause)
        return await self._finalize(ctx, report, pr.details.url)

    async def _triage(self, ctx: WorkflowContext) -> TriageResult:
        async def classify() -> TriageResult:
            result = await self.agent.triage(ctx.instance)
            changes: Dict[str, Any] = {"triage_result": result}
            if result.classification == "fixable":
                changes["status"] = "fixing"
            await ctx.repository.update_instance(ctx.instance_id, **changes)
            await ctx.log.append(
                ctx.instance_id,
                TriageDetails(
                    classification=result.classification,
                    reasoning=result.reasoning,
                    status="completed",
                ),
                correlation_id="triage",
                publish=True,
            )
            return result

        result = TriageResult.model_validate(await ctx.run("triage", classify))
        logger.info(f"Instance {ctx.instance_id} triaged as {result.classification}")
        return result

    async def _finish_unfixable(self, ctx: WorkflowContext, triage: TriageResult) -> Dict[str, Any]:
        status = UNFIXABLE_STATUSES[triage.classification]
        summary = f"Issue classified as {triage.classification}: {triage.reasoning}"

        async def finish() -> str:
            await ctx.log.append(
                ctx.instance_id,
                DoneDetails(summary=summary, status="completed"),
                correlation_id="done-unfixable",
                publish=True,
            )
            await ctx.repository.update_instance(ctx.instance_id, status=status)
            return status

        await ctx.run("done-unfixable", finish)
        return {"status": status, "classification": triage.classification}

    async def _clone(self, repository: str) -> RepoCloneDetails:
        path = await self.github.clone_repository(repository)
        return RepoCloneDetails(repository=repository, path=path)

    async def _fix(
        self, ctx: WorkflowContext, max_retries: int
    ) -> tuple[List[str], Optional[str], int]:
        """Run up to ``max_retries + 1`` attempts; return changed files, last error and attempts."""
        previous_error: Optional[str] = None
        changed_files: List[str] = []
        attempt = 0
        for attempt in range(max_retries + 1):
            prefix = f"retry-{attempt}-" if attempt else ""
            if attempt:
                await ctx.run(f"retry-{attempt}", lambda: self._record_retry(ctx, attempt))
                await ctx.sleep(f"backoff-{attempt}", compute_backoff(attempt))

            plan = FixPlan.model_validate(
                await ctx.run(
                    f"{prefix}plan",
                    lambda: self.agent.plan(ctx.instance, attempt, previous_error),
                )
            )
            error = None
            for action in plan.actions:
                step_id = f"{prefix}{action.id}"
                error = await self._perform(ctx, step_id, action, changed_files)
                if error is not None:
                    await emit_activity(
                        ctx, f"error-{step_id}", ErrorDetails(message=error, status="completed")
                    )
                    break
                await ctx.sleep(f"pause-{step_id}", self.pause)

            if error is None:
                return changed_files, None, attempt + 1
            logger.info(f"Attempt {attempt + 1} failed for instance_id={ctx.instance_id}: {error}")
            previous_error = error
        return changed_files, previous_error, attempt + 1

    async def _record_retry(self, ctx: WorkflowContext, attempt: int) -> int:
        await ctx.repository.update_instance(ctx.instance_id, retry_count=attempt)
        return attempt

    async def _perform(
        self, ctx: WorkflowContext, step_id: str, action: FixAction, changed_files: List[str]
    ) -> Optional[str]:
        """Execute one planned action; return an error message when it failed."""
        if isinstance(action, ReasonAction):
            await stream_reasoning(ctx, step_id, action.text, think=action.think_seconds)
            return None

        async def execute() -> ActivityDetails:
            return await self.agent.run_tool(ctx.instance, action)

        if isinstance(action, EditFileAction):
            outcome = await stream_file_change(ctx, step_id, action.file_path, execute)
            if outcome.error is None and action.file_path not in changed_files:
                changed_files.append(action.file_path)
            return outcome.error

        outcome = await emit_tool_activity(ctx, step_id, _started_details(action), execute)
        if outcome.error is not None:
            return outcome.error
        details = outcome.details
        if isinstance(action, RunCommandAction) and action.check and details.exit_code:
            output = (details.output or "").strip()
            return f"`{details.command}` exited with code {details.exit_code}: {output}"
        return None

    async def _open_pull_request(
        self, ctx: WorkflowContext, repository: str, report: FixReport
    ) -> PrCreatedDetails:
        reference = ctx.instance.issue_number or ctx.instance_id[:8]
        pr = await self.github.create_pull_request(
            repository, report.pr_title, report.summary, branch=f"gitfix/issue-{reference}"
        )
        await ctx.repository.update_instance(ctx.instance_id, pr_url=pr.url, pr_number=pr.number)
        return PrCreatedDetails(title=report.pr_title, url=pr.url, number=pr.number, branch=pr.branch)

    async def _escalate(self, ctx: WorkflowContext, reason: str, attempts: int) -> Dict[str, Any]:
        async def escalate() -> str:
            await ctx.log.append(
                ctx.instance_id,
                EscalatedDetails(reason=reason, attempts=attempts, status="completed"),
                correlation_id="escalate",
                publish=True,
            )
            await ctx.repository.update_instance(ctx.instance_id, status="escalated")
            return "escalated"

        await ctx.run("escalate", escalate)
        logger.warning(f"Instance {ctx.instance_id} escalated: {reason}")
        return {"status": "escalated", "reason": reason}

    async def _finalize(
        self, ctx: WorkflowContext, report: FixReport, pr_url: Optional[str]
    ) -> Dict[str, Any]:
        await stream_summary(
            ctx,
            SUMMARY_STREAM_ID,
            report.summary,
            replay=await ctx.has_completed("finalize-issue"),
        )

        async def finalize() -> str:
            await ctx.log.append(
                ctx.instance_id,
                DoneDetails(summary=report.summary, status="completed"),
                correlation_id=SUMMARY_STREAM_ID,
                publish=True,
            )
            await ctx.repository.update_instance(
                ctx.instance_id,
                status="awaiting_review",
                fix_summary=report.summary,
                issue_comment=report.comment,
            )
            return "awaiting_review"

        status = await ctx.run("finalize-issue", finalize)
        return {"status": status, "pr_url": pr_url}
