"""Model-backed issue classification using pydantic-ai."""

from __future__ import annotations

import logging
from typing import Optional

from pydantic_ai import Agent

from ..contracts import TriageResult
from ..persistence import WorkflowInstance

logger = logging.getLogger(__name__)

TRIAGE_PROMPT = (
    "You triage GitHub issues for an automated fixer. Classify the issue as "
    "'fixable' when it describes a concrete, reproducible defect that a small "
    "code change can resolve; 'too_complex' when resolving it needs design work "
    "or changes across many modules; 'not_actionable' for questions, feature "
    "requests, duplicates or reports without enough detail. Give a short reasoning."
)


def create_triage_agent(model: str = "test") -> Agent[None, TriageResult]:
    """Return a pydantic-ai agent that answers with a :class:`TriageResult`."""
    return Agent(
        model,
        output_type=TriageResult,
        system_prompt=TRIAGE_PROMPT,
        name="issue_triage_agent",
    )


def issue_prompt(issue: WorkflowInstance) -> str:
    parts = [f"Title: {issue.title}"]
    if issue.issue_number is not None:
        parts.append(f"Number: #{issue.issue_number}")
    parts.append(f"Body:\n{issue.body or '(empty)'}")
    return "\n".join(parts)


class AgentTriager:
    """Triager that asks a language model to classify the issue."""

    def __init__(self, agent: Optional[Agent[None, TriageResult]] = None, model: str = "test"):
        self.agent = agent or create_triage_agent(model)

    async def triage(self, issue: WorkflowInstance) -> TriageResult:
        logger.debug(f"Triaging issue {issue.id} with agent {self.agent.name}")
        result = await self.agent.run(issue_prompt(issue))
        logger.info(f"Issue {issue.id} classified as {result.output.classification}")
        return result.output
