"""Data models for persisted workflow state."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, Field

from ..constants import ACTIVE_STATUSES, ActivityType, IssueStatus
from ..contracts import ActivityDetails, TriageResult


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RepoRecord(BaseModel):
    """A GitHub repository connected to gitfix."""

    id: str
    full_name: str
    organization_id: Optional[str] = None
    max_retries: int = 2


class WorkflowInstance(BaseModel):
    """One triage-and-fix attempt. The id is the issue id."""

    id: str
    repo_id: str
    title: str
    body: Optional[str] = None
    issue_number: Optional[int] = None
    url: Optional[str] = None
    status: IssueStatus = "analyzing"
    triage_result: Optional[TriageResult] = None
    fix_summary: Optional[str] = None
    issue_comment: Optional[str] = None
    pr_url: Optional[str] = None
    pr_number: Optional[int] = None
    retry_count: int = 0
    resume_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES


class ActivityRecord(BaseModel):
    """Append-only log entry for one durable milestone."""

    id: int
    instance_id: str
    type: ActivityType
    details: ActivityDetails
    correlation_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


class StepRecord(BaseModel):
    """Memoized outcome of a named step."""

    instance_id: str
    step_id: str
    result: Any = None
    body_name: Optional[str] = None
    completed_at: datetime = Field(default_factory=utcnow)


class SleepRecord(BaseModel):
    """Absolute wake time of a named sleep."""

    instance_id: str
    sleep_id: str
    wake_at: datetime
    created_at: datetime = Field(default_factory=utcnow)
