"""Closed enumerations shared by the log, the live channel and the workflow."""

from __future__ import annotations

from typing import Literal, get_args

ActivityType = Literal[
    "triage",
    "text_generated",
    "reasoning",
    "repo_clone",
    "web_search",
    "file_read",
    "file_change",
    "run_command",
    "tool_call",
    "error",
    "pr_created",
    "ci_status",
    "pr_merged",
    "comment_drafted",
    "comment_posted",
    "escalated",
    "done",
    "fix_summary",
]

IssueStatus = Literal[
    "analyzing",
    "fixing",
    "awaiting_review",
    "resolved",
    "escalated",
    "too_complex",
    "skipped",
]

Classification = Literal["fixable", "too_complex", "not_actionable"]

ActivityStatus = Literal["started", "streaming", "completed", "failed"]

ACTIVITY_TYPES: tuple[str, ...] = get_args(ActivityType)
ISSUE_STATUSES: tuple[str, ...] = get_args(IssueStatus)
TRIAGE_CLASSIFICATIONS: tuple[str, ...] = get_args(Classification)

ACTIVE_STATUSES: frozenset[str] = frozenset({"analyzing", "fixing"})

# Terminal status reached directly from triage for each non-fixable class
UNFIXABLE_STATUSES: dict[str, str] = {
    "too_complex": "too_complex",
    "not_actionable": "skipped",
}

CHANNEL_PREFIX = "issue"


def channel_for(instance_id: str) -> str:
    """Return the live channel name scoped to one workflow instance."""
    return f"{CHANNEL_PREFIX}:{instance_id}"
