"""Repository abstraction for workflow state persistence."""

from __future__ import annotations

from typing import Any, Optional, Protocol

from ..contracts import ActivityDetails
from ..errors import InvalidRequest
from .models import ActivityRecord, RepoRecord, SleepRecord, StepRecord, WorkflowInstance

# Columns of WorkflowInstance that ``update_instance`` may change
MUTABLE_INSTANCE_FIELDS = frozenset(
    {
        "status",
        "triage_result",
        "fix_summary",
        "issue_comment",
        "pr_url",
        "pr_number",
        "retry_count",
        "resume_at",
    }
)


class WorkflowRepository(Protocol):
    """Protocol for workflow state persistence backends.

    Every method raises :class:`~gitfix.errors.StorageUnavailable` when the
    backend cannot be reached.
    """

    async def save_repo(self, repo: RepoRecord) -> None:
        """Insert or replace a connected repository."""

    async def get_repo(self, repo_id: str) -> RepoRecord | None:
        """Retrieve a connected repository by id."""

    async def create_instance(self, instance: WorkflowInstance) -> None:
        """Persist a new workflow instance. Raises ``InvalidRequest`` on duplicates."""

    async def get_instance(self, instance_id: str) -> WorkflowInstance | None:
        """Retrieve the workflow instance by id."""

    async def list_instances(self, status: Optional[str] = None) -> list[WorkflowInstance]:
        """Return persisted instances, optionally filtered by status."""

    async def update_instance(self, instance_id: str, **changes: Any) -> WorkflowInstance:
        """Apply ``changes`` to an instance and return the updated copy."""

    async def append_activity(
        self,
        instance_id: str,
        details: ActivityDetails,
        correlation_id: Optional[str] = None,
    ) -> int:
        """Durably append a record; upsert when ``correlation_id`` already exists."""

    async def list_activity(self, instance_id: str) -> list[ActivityRecord]:
        """Return the instance's records in insertion order."""

    async def get_step(self, instance_id: str, step_id: str) -> StepRecord | None:
        """Return the memoized step result if any."""

    async def save_step(self, record: StepRecord) -> None:
        """Memoize a step result."""

    async def get_sleep(self, instance_id: str, sleep_id: str) -> SleepRecord | None:
        """Return the persisted wake time of a sleep if any."""

    async def save_sleep(self, record: SleepRecord) -> None:
        """Persist the wake time of a sleep."""


def check_instance_changes(changes: dict[str, Any]) -> None:
    unknown = set(changes) - MUTABLE_INSTANCE_FIELDS
    if unknown:
        raise InvalidRequest(f"Cannot update instance fields: {sorted(unknown)}")
