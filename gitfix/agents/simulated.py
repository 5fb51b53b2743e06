"""Deterministic stand-in for the AI fixer.

Produces a plausible trajectory (reads, a web search, a guarded edit, a
typecheck and a test run) from the issue text alone, so the engine can be
driven end to end without a model or a real checkout.
"""

from __future__ import annotations

import difflib
import re
from pathlib import PurePosixPath
from typing import List, Optional

from ..contracts import (
    ActivityDetails,
    FileChangeDetails,
    FileReadDetails,
    RunCommandDetails,
    TriageResult,
    WebSearchDetails,
)
from ..errors import StepError
from ..persistence import WorkflowInstance
from .base import (
    EditFileAction,
    FixAction,
    FixPlan,
    FixReport,
    ReadFileAction,
    ReasonAction,
    RunCommandAction,
    Triager,
    WebSearchAction,
)

_FILE_RE = re.compile(r"(?<![\w/.-])((?:[\w.-]+/)+[\w.-]+\.[A-Za-z]{1,5})\b")

_NOT_ACTIONABLE = ("feature request", "question:", "how do i", "support request", "thank you")
_TOO_COMPLEX = ("refactor", "rewrite", "redesign", "migrate", "overhaul", "architecture")

_DEFAULT_FILE = "src/index.ts"


def mentioned_files(issue: WorkflowInstance) -> List[str]:
    """Source paths mentioned in the issue, in order of first mention."""
    seen: List[str] = []
    for match in _FILE_RE.finditer(f"{issue.title}\n{issue.body or ''}"):
        path = match.group(1)
        if path not in seen:
            seen.append(path)
    return seen


def classify(issue: WorkflowInstance) -> TriageResult:
    text = f"{issue.title}\n{issue.body or ''}".lower()
    if not (issue.body or "").strip():
        return TriageResult(
            classification="not_actionable",
            reasoning="The issue has no description, reproduction steps or error output to act on.",
        )
    if any(marker in text for marker in _NOT_ACTIONABLE):
        return TriageResult(
            classification="not_actionable",
            reasoning="This reads as a question or request rather than a defect with a reproduction path.",
        )
    if any(marker in text for marker in _TOO_COMPLEX):
        return TriageResult(
            classification="too_complex",
            reasoning="The request spans a structural change across the codebase and needs a human-led design.",
        )
    files = mentioned_files(issue)
    where = f" The affected files are identified ({', '.join(files)})." if files else ""
    return TriageResult(
        classification="fixable",
        reasoning=(
            f"This is a clearly described bug ({issue.title!r}) with a concrete failure mode."
            f"{where} Classifying as fixable."
        ),
    )


def _slug(path: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", PurePosixPath(path).stem.lower()).strip("-") or "file"


def _is_python(path: str) -> bool:
    return path.endswith(".py")


def _snippets(path: str, variant: int) -> tuple[list[str], list[str]]:
    stem = _slug(path).replace("-", "_")
    if _is_python(path):
        before = [
            f"def load_{stem}(session):",
            "    user = session.user",
            "    return user.id",
        ]
        if variant == 0:
            after = [
                f"def load_{stem}(session):",
                "    if session is None or session.user is None:",
                "        return None",
                "    user = session.user",
                "    return user.id",
            ]
        else:
            before = [
                f"def load_{stem}(session):",
                "    if session is None or session.user is None:",
                "        return None",
            ]
            after = [
                f"def load_{stem}(session: Session | None) -> str | None:",
                "    if session is None or session.user is None:",
                "        return None",
            ]
        return before, after

    name = "".join(part.capitalize() for part in stem.split("_"))
    before = [
        f"export function load{name}(session) {{",
        "  const user = session.user;",
        "  return user.id;",
        "}",
    ]
    if variant == 0:
        after = [
            f"export function load{name}(session) {{",
            "  if (!session?.user) {",
            "    return null;",
            "  }",
            "  const user = session.user;",
            "  return user.id;",
            "}",
        ]
    else:
        before = [
            f"export function load{name}(session) {{",
            "  if (!session?.user) {",
        ]
        after = [
            f"export function load{name}(session: Session | null): string | null {{",
            "  if (!session?.user) {",
        ]
    return before, after


def make_diff(path: str, variant: int = 0) -> str:
    """Unified diff for the simulated edit of ``path``."""
    before, after = _snippets(path, variant)
    return "\n".join(
        difflib.unified_diff(before, after, fromfile=f"a/{path}", tofile=f"b/{path}", lineterm="")
    )


def _typecheck_command(path: str) -> str:
    return "mypy ." if _is_python(path) else "npx tsc --noEmit"


def _test_command(path: str) -> str:
    return "pytest -q" if _is_python(path) else "pnpm test -- --reporter=verbose"


class SimulatedFixAgent:
    """Scripted fixer whose first ``failing_attempts`` attempts fail their checks."""

    def __init__(self, failing_attempts: int = 1, triager: Optional[Triager] = None) -> None:
        self.failing_attempts = failing_attempts
        self._triager = triager

    async def triage(self, issue: WorkflowInstance) -> TriageResult:
        if self._triager is not None:
            return await self._triager.triage(issue)
        return classify(issue)

    async def plan(
        self, issue: WorkflowInstance, attempt: int, previous_error: Optional[str]
    ) -> FixPlan:
        files = mentioned_files(issue) or [_DEFAULT_FILE]
        primary = files[0]
        checks: List[FixAction] = [
            RunCommandAction(id="run-typecheck", command=_typecheck_command(primary), attempt=attempt),
            RunCommandAction(id="run-tests", command=_test_command(primary), attempt=attempt),
        ]
        if attempt > 0:
            return FixPlan(
                actions=[
                    ReasonAction(
                        id="reasoning-error-recovery",
                        text=(
                            f"The previous attempt failed: {previous_error} "
                            f"I need to look at {primary} again and tighten the types "
                            "so the guard is visible to the checker."
                        ),
                        attempt=attempt,
                    ),
                    ReadFileAction(id=f"read-{_slug(primary)}", file_path=primary, attempt=attempt),
                    EditFileAction(
                        id=f"change-{_slug(primary)}",
                        file_path=primary,
                        instructions="Annotate the guarded function so callers handle a missing value.",
                        attempt=attempt,
                    ),
                    *checks,
                ]
            )

        actions: List[FixAction] = [
            ReasonAction(
                id="reasoning-initial",
                text=(
                    f"The issue reports {issue.title!r}. I need to examine "
                    f"{', '.join(files)} to understand where the value goes missing. "
                    f"Let me start by reading {primary}."
                ),
                think_seconds=4,
            )
        ]
        actions.extend(
            ReadFileAction(id=f"read-{_slug(path)}", file_path=path) for path in files
        )
        actions.append(WebSearchAction(id="web-search", query=issue.title))
        actions.append(
            ReasonAction(
                id="reasoning-plan",
                text=(
                    f"The code in {primary} dereferences a value that can be absent. "
                    "The fix is to guard against the missing value before it is used "
                    "and return early. Let me apply the fix."
                ),
            )
        )
        actions.append(
            EditFileAction(
                id=f"change-{_slug(primary)}",
                file_path=primary,
                instructions="Guard against a missing value before it is dereferenced.",
            )
        )
        actions.extend(checks)
        return FixPlan(actions=actions)

    async def run_tool(self, issue: WorkflowInstance, action: FixAction) -> ActivityDetails:
        if isinstance(action, ReadFileAction):
            return FileReadDetails(file_path=action.file_path, status="completed")
        if isinstance(action, WebSearchAction):
            return WebSearchDetails(
                query=action.query,
                snippet=(
                    "Check for null or undefined before dereferencing values that come "
                    "from asynchronous sources such as sessions and API responses."
                ),
                status="completed",
            )
        if isinstance(action, EditFileAction):
            return FileChangeDetails(
                file_path=action.file_path,
                diff=make_diff(action.file_path, variant=min(action.attempt, 1)),
                status="completed",
            )
        if isinstance(action, RunCommandAction):
            if action.check and action.attempt < self.failing_attempts:
                target = (mentioned_files(issue) or [_DEFAULT_FILE])[0]
                return RunCommandDetails(
                    command=action.command,
                    output=(
                        f"{target}(3,10): error: Object is possibly 'null'.\n"
                        "Found 1 error."
                    ),
                    exit_code=1,
                    status="completed",
                )
            return RunCommandDetails(
                command=action.command,
                output="All checks passed.",
                exit_code=0,
                status="completed",
            )
        raise StepError(f"Action {action.kind} is not a tool", step_id=action.id)

    async def summarize(self, issue: WorkflowInstance, changed_files: List[str]) -> FixReport:
        files = ", ".join(f"`{path}`" for path in changed_files) or "the affected code"
        summary = (
            f"Fixed {issue.title!r} by guarding against the missing value in {files} "
            "before it is dereferenced. Type checks and tests pass."
        )
        comment = "\n".join(
            [
                "## Automated Fix Applied",
                "",
                f"**Root cause:** a value that can be absent was dereferenced without a check in {files}.",
                "",
                "**Changes made:**",
                *(f"- `{path}`: return early when the session or user is missing" for path in changed_files),
                "",
                "**Tests:** type checks and the test suite pass.",
            ]
        )
        return FixReport(pr_title=f"fix: {issue.title}", summary=summary, comment=comment)
