"""Helpers that turn workflow actions into durable records and live messages.

Every helper follows the same shape: transient ``started``/``streaming``
messages go to the live channel only, while the ``completed`` payload is
written to the log inside a memoized step and then broadcast unchanged. When
the persisting step is already memoized the transient messages are skipped,
so a replay does not rewind what subscribers have already seen.
"""

from __future__ import annotations

import logging
import random
from typing import Awaitable, Callable, Iterator, List, Optional

from pydantic import BaseModel

from ..contracts import ActivityDetails, DoneDetails, FileChangeDetails, ReasoningDetails
from ..engine import WorkflowContext, parse_duration
from ..engine.durations import Duration
from ..errors import StepError

logger = logging.getLogger(__name__)

ToolBody = Callable[[], Awaitable[ActivityDetails]]


class ToolOutcome(BaseModel):
    """Completed (or failed) details of a tool step plus the failure message."""

    details: ActivityDetails
    error: Optional[str] = None


def _accumulate(parts: List[str], seed: str, sep: str, two_chunk_odds: float) -> Iterator[str]:
    rng = random.Random(seed)
    i = 0
    while i < len(parts):
        i += 2 if rng.random() < two_chunk_odds else 1
        yield sep.join(parts[:i])


def accumulate_words(text: str, seed: str) -> List[str]:
    """Growing prefixes of ``text``, one or two words longer each time."""
    return list(_accumulate(text.split(" "), seed, " ", 0.4))


def accumulate_lines(text: str, seed: str) -> List[str]:
    """Growing prefixes of ``text``, one or two lines longer each time."""
    return list(_accumulate(text.split("\n"), seed, "\n", 0.3))


async def emit_activity(
    ctx: WorkflowContext,
    step_id: str,
    details: ActivityDetails,
    correlation_id: Optional[str] = None,
) -> int:
    """Persist ``details`` in step ``step_id`` and broadcast it once."""

    async def record() -> int:
        return await ctx.log.append(
            ctx.instance_id, details, correlation_id=correlation_id or step_id, publish=True
        )

    return await ctx.run(step_id, record)


async def emit_tool_activity(
    ctx: WorkflowContext,
    step_id: str,
    started: ActivityDetails,
    execute: ToolBody,
    duration: Duration = "1.5s",
) -> ToolOutcome:
    """Announce a tool call, let it run, then persist and broadcast its result.

    A :class:`StepError` raised by ``execute`` is caught inside the step and
    memoized as a ``failed`` record, so the failure replays deterministically.
    """
    if not await ctx.has_completed(step_id):
        await ctx.publish(started.with_status("started"), correlation_id=step_id)
    await ctx.sleep(f"tool-{step_id}", duration)

    async def record() -> ToolOutcome:
        try:
            outcome = ToolOutcome(details=(await execute()).with_status("completed"))
        except StepError as e:
            logger.warning(f"Tool step {step_id} failed for instance_id={ctx.instance_id}: {e}")
            outcome = ToolOutcome(details=started.with_status("failed"), error=str(e))
        await ctx.log.append(ctx.instance_id, outcome.details, correlation_id=step_id, publish=True)
        return outcome

    return ToolOutcome.model_validate(await ctx.run(step_id, record))


async def stream_reasoning(
    ctx: WorkflowContext,
    step_id: str,
    text: str,
    think: Duration = "2s",
) -> ReasoningDetails:
    """Stream ``text`` as reasoning a word or two at a time, then persist it."""
    replay = await ctx.has_completed(step_id)
    if not replay:
        await ctx.publish(ReasoningDetails(status="streaming"), correlation_id=step_id)
    await ctx.sleep(f"think-{step_id}", think)
    if not replay:
        for partial in accumulate_words(text, step_id):
            await ctx.publish(
                ReasoningDetails(content=partial, status="streaming"), correlation_id=step_id
            )

    completed = ReasoningDetails(
        content=text,
        status="completed",
        duration_seconds=max(1, round(parse_duration(think).total_seconds())),
    )
    await emit_activity(ctx, step_id, completed)
    return completed


async def stream_file_change(
    ctx: WorkflowContext,
    step_id: str,
    file_path: str,
    execute: ToolBody,
    duration: Duration = "1s",
) -> ToolOutcome:
    """Apply an edit in its own step, stream the diff line by line, then persist it."""
    replay = await ctx.has_completed(step_id)
    if not replay:
        await ctx.publish(
            FileChangeDetails(file_path=file_path, status="streaming"), correlation_id=step_id
        )
    await ctx.sleep(f"tool-{step_id}", duration)

    async def apply() -> ToolOutcome:
        try:
            return ToolOutcome(details=await execute())
        except StepError as e:
            logger.warning(f"Edit {step_id} failed for instance_id={ctx.instance_id}: {e}")
            return ToolOutcome(details=FileChangeDetails(file_path=file_path), error=str(e))

    outcome = ToolOutcome.model_validate(await ctx.run(f"apply-{step_id}", apply))
    if outcome.error is None and not replay:
        for partial in accumulate_lines(outcome.details.diff, step_id):
            await ctx.publish(
                FileChangeDetails(file_path=file_path, diff=partial, status="streaming"),
                correlation_id=step_id,
            )

    final = outcome.details.with_status("failed" if outcome.error else "completed")
    await emit_activity(ctx, step_id, final)
    return ToolOutcome(details=final, error=outcome.error)


async def stream_summary(
    ctx: WorkflowContext, correlation_id: str, summary: str, replay: bool = False
) -> None:
    """Stream ``summary`` on the ``done`` topic; the caller persists the final record."""
    if replay:
        return
    await ctx.publish(DoneDetails(status="streaming"), correlation_id=correlation_id)
    for partial in accumulate_words(summary, correlation_id):
        await ctx.publish(DoneDetails(summary=partial, status="streaming"), correlation_id=correlation_id)
