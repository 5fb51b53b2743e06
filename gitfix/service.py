"""External interface: the operations callers use to drive and observe workflows."""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Iterable, Optional

from .agents import FixAgent, SimulatedFixAgent
from .config import GitfixConfig, load_config
from .constants import ACTIVITY_TYPES, channel_for
from .contracts import CommentDraftedDetails, CommentPostedDetails
from .engine import WorkflowEngine
from .errors import InvalidStatus, NoDraftAvailable, NotFound, Unauthorized
from .github import GitHubClient, SimulatedGitHubClient
from .persistence import (
    ActivityRecord,
    RepoRecord,
    WorkflowInstance,
    WorkflowRepository,
    get_repository,
)
from .security import (
    OrganizationPolicy,
    PolicyEngine,
    Principal,
    SubscriptionToken,
    SubscriptionTokenService,
    enforce,
)
from .transports import BaseTransport, Subscription, get_transport
from .workflows import TriageAndFixWorkflow

logger = logging.getLogger(__name__)

COMMENT_POSTED_ID = "comment-posted"


class IssueService:
    """Entry points for triggering, approving and watching issue workflows.

    Every operation on an instance raises :class:`NotFound` for unknown ids
    before anything else happens. Approvals and subscription tokens also
    require a :class:`Principal` the policy accepts.
    """

    def __init__(
        self,
        repository: WorkflowRepository,
        engine: WorkflowEngine,
        github: GitHubClient,
        tokens: SubscriptionTokenService,
        policy: Optional[PolicyEngine] = None,
        transport: Optional[BaseTransport] = None,
        default_max_retries: int = 2,
    ) -> None:
        self.repository = repository
        self.engine = engine
        self.github = github
        self.tokens = tokens
        self.policy = policy or OrganizationPolicy(repository)
        self.transport = transport
        self.default_max_retries = default_max_retries
        self._approval_lock = asyncio.Lock()

    async def _require_instance(self, instance_id: str) -> WorkflowInstance:
        instance = await self.repository.get_instance(instance_id)
        if instance is None:
            raise NotFound(f"Instance not found: {instance_id}")
        return instance

    # ------------------------------------------------------------------
    # Inbound
    async def register_repo(
        self,
        full_name: str,
        organization_id: Optional[str] = None,
        max_retries: Optional[int] = None,
        repo_id: Optional[str] = None,
    ) -> RepoRecord:
        """Connect a GitHub repository so its issues can be processed."""
        repo = RepoRecord(
            id=repo_id or str(uuid.uuid4()),
            full_name=full_name,
            organization_id=organization_id,
            max_retries=self.default_max_retries if max_retries is None else max_retries,
        )
        await self.repository.save_repo(repo)
        logger.info(f"Registered repository {full_name} as {repo.id}")
        return repo

    async def open_issue(
        self,
        repo_id: str,
        title: str,
        body: Optional[str] = None,
        issue_number: Optional[int] = None,
        url: Optional[str] = None,
        instance_id: Optional[str] = None,
        start: bool = True,
    ) -> WorkflowInstance:
        """Record a newly created issue and, unless ``start`` is false, enqueue it."""
        if await self.repository.get_repo(repo_id) is None:
            raise NotFound(f"Repository not found: {repo_id}")
        if issue_number is not None:
            for status in ("analyzing", "fixing"):
                for existing in await self.repository.list_instances(status):
                    if existing.repo_id == repo_id and existing.issue_number == issue_number:
                        raise InvalidStatus(
                            f"Issue #{issue_number} already has an active workflow: {existing.id}"
                        )

        instance = WorkflowInstance(
            id=instance_id or str(uuid.uuid4()),
            repo_id=repo_id,
            title=title,
            body=body,
            issue_number=issue_number,
            url=url,
        )
        await self.repository.create_instance(instance)
        logger.info(f"Opened issue {title!r} as instance {instance.id}")
        if start:
            await self.engine.enqueue(instance.id)
        return instance

    async def enqueue(self, instance_id: str) -> asyncio.Task:
        """Start (or restart) the workflow for an existing instance."""
        await self._require_instance(instance_id)
        return await self.engine.enqueue(instance_id)

    async def approve(self, principal: Optional[Principal], instance_id: str) -> WorkflowInstance:
        """Resolve an instance awaiting review without posting anything."""
        instance = await self._require_instance(instance_id)
        await enforce(self.policy, principal, "approve", instance)
        async with self._approval_lock:
            instance = await self._require_instance(instance_id)
            self._require_review(instance)
            updated = await self.repository.update_instance(instance_id, status="resolved")
        logger.info(f"Instance {instance_id} approved")
        return updated

    async def approve_and_post(
        self, principal: Optional[Principal], instance_id: str
    ) -> WorkflowInstance:
        """Post the drafted comment on the issue, record it and resolve the instance."""
        instance = await self._require_instance(instance_id)
        await enforce(self.policy, principal, "approve", instance)
        async with self._approval_lock:
            instance = await self._require_instance(instance_id)
            draft = await self._latest_draft(instance_id)
            if draft is None:
                raise NoDraftAvailable(f"No comment drafted for instance {instance_id}")
            self._require_review(instance)

            comment_url = await self._post_once(instance, draft)
            await self.engine.log.append(
                instance_id,
                CommentPostedDetails(
                    comment=draft.comment,
                    pr_url=draft.pr_url,
                    comment_url=comment_url,
                    status="completed",
                ),
                correlation_id=COMMENT_POSTED_ID,
                publish=True,
            )
            updated = await self.repository.update_instance(instance_id, status="resolved")
        logger.info(f"Instance {instance_id} approved and comment posted to {comment_url}")
        return updated

    async def _post_once(self, instance: WorkflowInstance, draft: CommentDraftedDetails) -> str:
        """Post the draft unless an earlier attempt already did; return the comment URL.

        A ``started`` record is written before posting. When a previous attempt
        left one behind, GitHub is asked for the comment before posting again.
        """
        previous = await self._posted_record(instance.id)
        if previous is not None and previous.status == "completed" and previous.comment_url:
            return previous.comment_url

        repo = await self.repository.get_repo(instance.repo_id)
        repository = repo.full_name if repo else instance.repo_id
        if previous is not None:
            existing = await self.github.find_comment(
                repository, instance.issue_number, draft.comment
            )
            if existing is not None:
                logger.info(f"Comment for instance {instance.id} already posted at {existing.url}")
                return existing.url
        else:
            await self.engine.log.append(
                instance.id,
                CommentPostedDetails(comment=draft.comment, pr_url=draft.pr_url, status="started"),
                correlation_id=COMMENT_POSTED_ID,
            )

        posted = await self.github.post_comment(repository, instance.issue_number, draft.comment)
        return posted.url

    async def _posted_record(self, instance_id: str) -> Optional[CommentPostedDetails]:
        for record in await self.repository.list_activity(instance_id):
            if record.correlation_id == COMMENT_POSTED_ID and isinstance(
                record.details, CommentPostedDetails
            ):
                return record.details
        return None

    @staticmethod
    def _require_review(instance: WorkflowInstance) -> None:
        if instance.status != "awaiting_review":
            raise InvalidStatus(
                f"Instance {instance.id} is {instance.status}, not awaiting_review"
            )

    async def _latest_draft(self, instance_id: str) -> Optional[CommentDraftedDetails]:
        drafts = [
            record.details
            for record in await self.repository.list_activity(instance_id)
            if isinstance(record.details, CommentDraftedDetails)
        ]
        return drafts[-1] if drafts else None

    # ------------------------------------------------------------------
    # Outbound
    async def get_instance(self, instance_id: str) -> WorkflowInstance:
        return await self._require_instance(instance_id)

    async def list_instances(self, status: Optional[str] = None) -> list[WorkflowInstance]:
        return await self.repository.list_instances(status)

    async def list_activity(self, instance_id: str) -> list[ActivityRecord]:
        """Authoritative snapshot of the instance's records, oldest first."""
        await self._require_instance(instance_id)
        return await self.engine.log.list_by_instance(instance_id)

    async def get_subscription_token(
        self,
        principal: Optional[Principal],
        instance_id: str,
        topics: Optional[Iterable[str]] = None,
    ) -> SubscriptionToken:
        """Issue a short-lived token for the instance's live channel."""
        instance = await self._require_instance(instance_id)
        await enforce(self.policy, principal, "subscribe", instance)
        if not instance.is_active:
            raise InvalidStatus(f"Instance {instance_id} is {instance.status}; nothing to stream")
        topics = list(topics) if topics is not None else list(ACTIVITY_TYPES)
        return self.tokens.issue(channel_for(instance_id), topics, subject=principal.user_id)

    async def subscribe(self, token: str, lifespan: Optional[float] = None) -> Subscription:
        """Open the live channel a token grants access to."""
        if self.transport is None:
            raise Unauthorized("Live channel is not available")
        claims = self.tokens.verify(token)
        return await self.transport.subscribe(claims.channel, claims.topics, lifespan=lifespan)


def create_service(
    config: Optional[GitfixConfig] = None,
    *,
    agent: Optional[FixAgent] = None,
    github: Optional[GitHubClient] = None,
    repository: Optional[WorkflowRepository] = None,
    transport: Optional[BaseTransport] = None,
) -> IssueService:
    """Wire repository, transport, engine and workflow from configuration."""
    config = config or load_config()
    repository = repository or get_repository(config.database_url, config)
    transport = transport or get_transport(config=config)
    github = github or SimulatedGitHubClient()
    workflow = TriageAndFixWorkflow(
        agent or SimulatedFixAgent(),
        github,
        default_max_retries=config.workflow.default_max_retries,
    )
    engine = WorkflowEngine(
        repository,
        workflow,
        transport,
        time_scale=config.workflow.time_scale,
        max_inline_sleep=config.workflow.max_inline_sleep,
        debug=config.workflow.debug,
    )
    tokens = SubscriptionTokenService(
        config.tokens.secret,
        ttl_seconds=config.tokens.ttl_seconds,
        issuer=config.tokens.issuer,
    )
    return IssueService(
        repository,
        engine,
        github,
        tokens,
        transport=transport,
        default_max_retries=config.workflow.default_max_retries,
    )
