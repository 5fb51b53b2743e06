"""Runtime policy enforcement for gitfix."""

from __future__ import annotations

import logging
from typing import Optional, Protocol

from ..errors import Unauthorized
from ..persistence import WorkflowInstance, WorkflowRepository
from .context import Principal

logger = logging.getLogger(__name__)


class PolicyEngine(Protocol):
    """Evaluates authorization policies at runtime."""

    async def evaluate(
        self, principal: Optional[Principal], action: str, instance: WorkflowInstance
    ) -> bool:
        """Return ``True`` if ``principal`` may perform ``action`` on ``instance``."""


class OrganizationPolicy:
    """Grant access when the caller's organization owns the issue's repository."""

    def __init__(self, repository: WorkflowRepository) -> None:
        self._repository = repository

    async def evaluate(
        self, principal: Optional[Principal], action: str, instance: WorkflowInstance
    ) -> bool:
        if principal is None or principal.organization_id is None:
            return False
        repo = await self._repository.get_repo(instance.repo_id)
        if repo is None:
            return False
        return repo.organization_id == principal.organization_id


async def enforce(
    policy: PolicyEngine,
    principal: Optional[Principal],
    action: str,
    instance: WorkflowInstance,
) -> None:
    """Raise :class:`Unauthorized` unless ``policy`` allows the action."""
    if not await policy.evaluate(principal, action, instance):
        who = principal.user_id if principal else "anonymous"
        logger.warning(f"Denied {action} on instance {instance.id} for {who}")
        raise Unauthorized(f"Not authorized to {action} instance {instance.id}")
