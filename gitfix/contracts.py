"""Core message contracts for the gitfix workflow system."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter

from .constants import ActivityStatus, Classification


class TriageResult(BaseModel):
    """Outcome of classifying an issue."""

    classification: Classification
    reasoning: str


class _Details(BaseModel):
    """Fields shared by every activity payload."""

    status: Optional[ActivityStatus] = None

    def with_status(self, status: ActivityStatus, **changes: Any) -> "_Details":
        return self.model_copy(update={"status": status, **changes})


class TriageDetails(_Details):
    type: Literal["triage"] = "triage"
    classification: Classification
    reasoning: str


class TextGeneratedDetails(_Details):
    type: Literal["text_generated"] = "text_generated"
    content: str = ""


class ReasoningDetails(_Details):
    type: Literal["reasoning"] = "reasoning"
    content: str = ""
    duration_seconds: Optional[int] = None


class RepoCloneDetails(_Details):
    type: Literal["repo_clone"] = "repo_clone"
    repository: str
    path: Optional[str] = None


class WebSearchDetails(_Details):
    type: Literal["web_search"] = "web_search"
    query: str
    snippet: Optional[str] = None


class FileReadDetails(_Details):
    type: Literal["file_read"] = "file_read"
    file_path: str


class FileChangeDetails(_Details):
    type: Literal["file_change"] = "file_change"
    file_path: str
    diff: str = ""


class RunCommandDetails(_Details):
    type: Literal["run_command"] = "run_command"
    command: str
    output: Optional[str] = None
    exit_code: Optional[int] = None


class ToolCallDetails(_Details):
    type: Literal["tool_call"] = "tool_call"
    tool: str
    arguments: Dict[str, Any] = Field(default_factory=dict)
    result: Any = None


class ErrorDetails(_Details):
    type: Literal["error"] = "error"
    message: str


class PrCreatedDetails(_Details):
    type: Literal["pr_created"] = "pr_created"
    title: str
    url: Optional[str] = None
    number: Optional[int] = None
    branch: Optional[str] = None


class CiStatusDetails(_Details):
    type: Literal["ci_status"] = "ci_status"
    pr_number: int
    conclusion: Optional[Literal["pending", "passed", "failed"]] = None
    checks: Optional[int] = None
    passed: Optional[int] = None
    failed: Optional[int] = None


class PrMergedDetails(_Details):
    type: Literal["pr_merged"] = "pr_merged"
    pr_number: int
    url: Optional[str] = None


class CommentDraftedDetails(_Details):
    type: Literal["comment_drafted"] = "comment_drafted"
    comment: str
    pr_url: Optional[str] = None


class CommentPostedDetails(_Details):
    type: Literal["comment_posted"] = "comment_posted"
    comment: str
    pr_url: Optional[str] = None
    comment_url: Optional[str] = None


class EscalatedDetails(_Details):
    type: Literal["escalated"] = "escalated"
    reason: str
    attempts: int = 0


class DoneDetails(_Details):
    type: Literal["done"] = "done"
    summary: str = ""


class FixSummaryDetails(_Details):
    type: Literal["fix_summary"] = "fix_summary"
    summary: str


ActivityDetails = Annotated[
    Union[
        TriageDetails,
        TextGeneratedDetails,
        ReasoningDetails,
        RepoCloneDetails,
        WebSearchDetails,
        FileReadDetails,
        FileChangeDetails,
        RunCommandDetails,
        ToolCallDetails,
        ErrorDetails,
        PrCreatedDetails,
        CiStatusDetails,
        PrMergedDetails,
        CommentDraftedDetails,
        CommentPostedDetails,
        EscalatedDetails,
        DoneDetails,
        FixSummaryDetails,
    ],
    Field(discriminator="type"),
]

_details_adapter: TypeAdapter[ActivityDetails] = TypeAdapter(ActivityDetails)


def parse_details(data: Dict[str, Any] | str) -> ActivityDetails:
    """Validate a raw payload (dict or JSON) into its topic's details model."""
    if isinstance(data, str):
        return _details_adapter.validate_json(data)
    return _details_adapter.validate_python(data)


class StreamMessage(BaseModel):
    """Unit delivered over a live channel. Never persisted."""

    message_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    channel: str
    topic: str
    data: ActivityDetails
    correlation_id: Optional[str] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def to_json(self) -> str:
        """Serialize message to JSON."""
        return self.model_dump_json()

    @classmethod
    def from_json(cls, data: str | bytes) -> "StreamMessage":
        """Deserialize message from JSON."""
        return cls.model_validate_json(data)
