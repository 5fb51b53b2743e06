"""Shared fixtures for gitfix tests."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from gitfix.agents import SimulatedFixAgent
from gitfix.engine import WorkflowEngine
from gitfix.errors import StorageUnavailable
from gitfix.github import SimulatedGitHubClient
from gitfix.persistence import InMemoryWorkflowRepository
from gitfix.security import SubscriptionTokenService
from gitfix.service import IssueService
from gitfix.transports.inmemory import InMemoryTransport
from gitfix.workflows import TriageAndFixWorkflow

SESSION_BUG = (
    "Calling `getUser()` in src/auth/session.ts after the session expires throws "
    "TypeError: Cannot read properties of undefined (reading 'id'). "
    "The null check is missing before the user is dereferenced."
)


class FakeClock:
    """Manually advanced clock; ``sleep`` advances it instead of waiting."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 1, 1, tzinfo=timezone.utc)
        self.slept: list[float] = []

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)

    async def sleep(self, seconds: float) -> None:
        self.slept.append(seconds)
        self.advance(seconds)


class FailingAppendRepository(InMemoryWorkflowRepository):
    """Fails the first completed append of one activity type, like a database outage."""

    def __init__(self, activity_type: str) -> None:
        super().__init__()
        self.activity_type = activity_type
        self.failures = 0

    async def append_activity(self, instance_id, details, correlation_id=None):
        if details.type == self.activity_type and details.status == "completed" and not self.failures:
            self.failures += 1
            raise StorageUnavailable("database went away")
        return await super().append_activity(instance_id, details, correlation_id)


@pytest.fixture
def repository():
    return InMemoryWorkflowRepository()


@pytest.fixture
def transport():
    return InMemoryTransport()


@pytest.fixture
def github():
    return SimulatedGitHubClient()


@pytest.fixture
def clock():
    return FakeClock()


def build_service(
    repository,
    transport,
    github,
    agent=None,
    **engine_options,
) -> IssueService:
    workflow = TriageAndFixWorkflow(agent or SimulatedFixAgent(), github, pause=0)
    engine_options.setdefault("time_scale", 0)
    engine = WorkflowEngine(repository, workflow, transport, **engine_options)
    tokens = SubscriptionTokenService("test-secret", ttl_seconds=60)
    return IssueService(repository, engine, github, tokens, transport=transport)


@pytest.fixture
def service(repository, transport, github):
    return build_service(repository, transport, github)
