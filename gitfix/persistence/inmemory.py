"""In-memory implementation of the workflow repository."""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple

from ..contracts import ActivityDetails
from ..errors import InvalidRequest, NotFound
from .models import (
    ActivityRecord,
    RepoRecord,
    SleepRecord,
    StepRecord,
    WorkflowInstance,
    utcnow,
)
from .repository import WorkflowRepository, check_instance_changes


class InMemoryWorkflowRepository(WorkflowRepository):
    """Store workflow state in local memory.

    Useful for tests or when no database is configured. Data survives a
    simulated restart as long as the same repository object is reused, but
    not a real process restart.
    """

    def __init__(self) -> None:
        self._repos: Dict[str, RepoRecord] = {}
        self._instances: Dict[str, WorkflowInstance] = {}
        self._activity: Dict[str, List[ActivityRecord]] = {}
        self._steps: Dict[Tuple[str, str], StepRecord] = {}
        self._sleeps: Dict[Tuple[str, str], SleepRecord] = {}
        self._activity_id = 0

    # ------------------------------------------------------------------
    async def save_repo(self, repo: RepoRecord) -> None:
        self._repos[repo.id] = repo.model_copy(deep=True)

    async def get_repo(self, repo_id: str) -> RepoRecord | None:
        repo = self._repos.get(repo_id)
        return repo.model_copy(deep=True) if repo else None

    # ------------------------------------------------------------------
    async def create_instance(self, instance: WorkflowInstance) -> None:
        if instance.id in self._instances:
            raise InvalidRequest(f"Instance already exists: {instance.id}")
        self._instances[instance.id] = instance.model_copy(deep=True)
        self._activity[instance.id] = []

    async def get_instance(self, instance_id: str) -> WorkflowInstance | None:
        wf = self._instances.get(instance_id)
        return wf.model_copy(deep=True) if wf else None

    async def list_instances(self, status: Optional[str] = None) -> list[WorkflowInstance]:
        return [
            wf.model_copy(deep=True)
            for wf in self._instances.values()
            if status is None or wf.status == status
        ]

    async def update_instance(self, instance_id: str, **changes: Any) -> WorkflowInstance:
        check_instance_changes(changes)
        wf = self._instances.get(instance_id)
        if wf is None:
            raise NotFound(f"Instance not found: {instance_id}")
        updated = WorkflowInstance.model_validate(
            {**wf.model_dump(), **changes, "updated_at": utcnow()}
        )
        self._instances[instance_id] = updated
        return updated.model_copy(deep=True)

    # ------------------------------------------------------------------
    async def append_activity(
        self,
        instance_id: str,
        details: ActivityDetails,
        correlation_id: Optional[str] = None,
    ) -> int:
        records = self._activity.setdefault(instance_id, [])
        if correlation_id is not None:
            for idx, existing in enumerate(records):
                if existing.correlation_id == correlation_id:
                    records[idx] = existing.model_copy(update={"details": details})
                    return existing.id
        self._activity_id += 1
        records.append(
            ActivityRecord(
                id=self._activity_id,
                instance_id=instance_id,
                type=details.type,
                details=details,
                correlation_id=correlation_id,
            )
        )
        return self._activity_id

    async def list_activity(self, instance_id: str) -> list[ActivityRecord]:
        return [r.model_copy(deep=True) for r in self._activity.get(instance_id, [])]

    # ------------------------------------------------------------------
    async def get_step(self, instance_id: str, step_id: str) -> StepRecord | None:
        record = self._steps.get((instance_id, step_id))
        return record.model_copy(deep=True) if record else None

    async def save_step(self, record: StepRecord) -> None:
        self._steps[(record.instance_id, record.step_id)] = record.model_copy(deep=True)

    async def get_sleep(self, instance_id: str, sleep_id: str) -> SleepRecord | None:
        return self._sleeps.get((instance_id, sleep_id))

    async def save_sleep(self, record: SleepRecord) -> None:
        self._sleeps[(record.instance_id, record.sleep_id)] = record
