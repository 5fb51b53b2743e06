"""Exception hierarchy for gitfix."""

from __future__ import annotations

from datetime import datetime


class GitfixError(Exception):
    """Base class for all errors raised by gitfix."""


class StorageUnavailable(GitfixError):
    """The log or instance store could not be reached or written."""


class StepError(GitfixError):
    """Business failure raised inside a step body (a failing tool, a bad patch)."""

    def __init__(self, message: str, step_id: str | None = None) -> None:
        super().__init__(message)
        self.step_id = step_id


class StepIdConflict(GitfixError):
    """A step or sleep id was reused within one workflow instance."""


class Unauthorized(GitfixError):
    """The caller is not allowed to perform the requested operation."""


class NotFound(GitfixError):
    """The instance id does not resolve to a known workflow."""


class NoDraftAvailable(GitfixError):
    """``approve_and_post`` was called before a comment was drafted."""


class InvalidStatus(GitfixError):
    """The instance is not in a status that allows the requested operation."""


class InvalidRequest(GitfixError, ValueError):
    """The request names an unknown topic or field, or reuses an existing id."""


class WorkflowSuspended(Exception):
    """Raised by the scheduler to release the worker until ``wake_at``.

    Workflow definitions must let it propagate; the engine catches it and
    records the resume time on the instance.
    """

    def __init__(self, instance_id: str, sleep_id: str, wake_at: datetime) -> None:
        super().__init__(f"{instance_id} suspended on {sleep_id} until {wake_at.isoformat()}")
        self.instance_id = instance_id
        self.sleep_id = sleep_id
        self.wake_at = wake_at
