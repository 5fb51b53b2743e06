"""GitHub collaborator used by the workflow."""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Protocol

from pydantic import BaseModel

from ..contracts import CiStatusDetails

logger = logging.getLogger(__name__)


class PullRequest(BaseModel):
    url: str
    number: int
    branch: str


class PostedComment(BaseModel):
    repository: str
    issue_number: Optional[int] = None
    body: str
    url: str


class GitHubClient(Protocol):
    """Operations the workflow performs against GitHub.

    Workflow calls happen inside memoized steps, so implementations may
    assume they are invoked at most once per instance and step. Comments are
    posted on approval, outside any step; ``find_comment`` lets a retried
    approval detect a comment that already went out.
    """

    async def clone_repository(self, repository: str) -> str:
        """Check out ``repository`` and return the local path."""

    async def create_pull_request(
        self, repository: str, title: str, body: str, branch: str
    ) -> PullRequest:
        """Open a pull request from ``branch``."""

    async def get_ci_status(self, repository: str, pr_number: int) -> CiStatusDetails:
        """Return the completed CI status for a pull request."""

    async def post_comment(
        self, repository: str, issue_number: Optional[int], body: str
    ) -> PostedComment:
        """Post ``body`` on the issue."""

    async def find_comment(
        self, repository: str, issue_number: Optional[int], body: str
    ) -> Optional[PostedComment]:
        """Return an already posted comment on the issue with exactly ``body``, if any."""


class SimulatedGitHubClient:
    """In-process stand-in that records what would have been sent to GitHub."""

    def __init__(
        self,
        first_pr_number: int = 100,
        ci_checks: int = 4,
        failing_checks: int = 0,
        workspace: str = "/tmp/gitfix",
    ) -> None:
        self._next_pr = first_pr_number
        self.ci_checks = ci_checks
        self.failing_checks = failing_checks
        self.workspace = workspace.rstrip("/")
        self.pull_requests: Dict[str, List[PullRequest]] = {}
        self.comments: List[PostedComment] = []

    async def clone_repository(self, repository: str) -> str:
        path = f"{self.workspace}/{repository.replace('/', '-')}"
        logger.debug(f"Simulated clone of {repository} into {path}")
        return path

    async def create_pull_request(
        self, repository: str, title: str, body: str, branch: str
    ) -> PullRequest:
        number = self._next_pr
        self._next_pr += 1
        pr = PullRequest(
            url=f"https://github.com/{repository}/pull/{number}",
            number=number,
            branch=branch,
        )
        self.pull_requests.setdefault(repository, []).append(pr)
        logger.info(f"Opened simulated pull request {pr.url}")
        return pr

    async def get_ci_status(self, repository: str, pr_number: int) -> CiStatusDetails:
        failed = min(self.failing_checks, self.ci_checks)
        return CiStatusDetails(
            pr_number=pr_number,
            conclusion="failed" if failed else "passed",
            checks=self.ci_checks,
            passed=self.ci_checks - failed,
            failed=failed,
            status="completed",
        )

    async def post_comment(
        self, repository: str, issue_number: Optional[int], body: str
    ) -> PostedComment:
        anchor = len(self.comments) + 1
        target = issue_number if issue_number is not None else 0
        comment = PostedComment(
            repository=repository,
            issue_number=issue_number,
            body=body,
            url=f"https://github.com/{repository}/issues/{target}#issuecomment-{anchor}",
        )
        self.comments.append(comment)
        logger.info(f"Posted simulated comment {comment.url}")
        return comment

    async def find_comment(
        self, repository: str, issue_number: Optional[int], body: str
    ) -> Optional[PostedComment]:
        for comment in self.comments:
            if (comment.repository, comment.issue_number, comment.body) == (
                repository,
                issue_number,
                body,
            ):
                return comment
        return None
