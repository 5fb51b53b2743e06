"""Contracts between the workflow and the AI fixing logic."""

from __future__ import annotations

from typing import Annotated, List, Literal, Optional, Protocol, Union

from pydantic import BaseModel, Field

from ..contracts import ActivityDetails, TriageResult
from ..persistence import WorkflowInstance


class _Action(BaseModel):
    id: str = Field(..., description="Step id, unique within one attempt")
    # Remediation attempt that issued the action; 0 is the first attempt
    attempt: int = 0


class ReasonAction(_Action):
    kind: Literal["reason"] = "reason"
    text: str
    think_seconds: float = 2.0


class ReadFileAction(_Action):
    kind: Literal["read_file"] = "read_file"
    file_path: str


class WebSearchAction(_Action):
    kind: Literal["web_search"] = "web_search"
    query: str


class EditFileAction(_Action):
    kind: Literal["edit_file"] = "edit_file"
    file_path: str
    instructions: str = ""


class RunCommandAction(_Action):
    kind: Literal["run_command"] = "run_command"
    command: str
    # A non-zero exit code of a check fails the attempt
    check: bool = True


FixAction = Annotated[
    Union[ReasonAction, ReadFileAction, WebSearchAction, EditFileAction, RunCommandAction],
    Field(discriminator="kind"),
]


class FixPlan(BaseModel):
    """Ordered actions for one attempt."""

    actions: List[FixAction] = Field(default_factory=list)


class FixReport(BaseModel):
    """Human-facing output once the fix is verified."""

    pr_title: str
    summary: str
    comment: str


class FixAgent(Protocol):
    """Black-box AI collaborator that classifies issues and drives the fix.

    Every method is called from inside a memoized step, so each call happens
    at most once per instance and attempt.
    """

    async def triage(self, issue: WorkflowInstance) -> TriageResult:
        """Classify ``issue``."""

    async def plan(
        self, issue: WorkflowInstance, attempt: int, previous_error: Optional[str]
    ) -> FixPlan:
        """Return the actions for ``attempt``; ``previous_error`` explains the last failure."""

    async def run_tool(self, issue: WorkflowInstance, action: FixAction) -> ActivityDetails:
        """Execute a non-reasoning action and return its completed details.

        Raises :class:`~gitfix.errors.StepError` when the tool itself fails.
        """

    async def summarize(self, issue: WorkflowInstance, changed_files: List[str]) -> FixReport:
        """Describe the verified fix."""


class Triager(Protocol):
    async def triage(self, issue: WorkflowInstance) -> TriageResult:
        """Classify ``issue``."""
