"""Memoized step execution."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Awaitable, Callable

from pydantic_core import to_jsonable_python

from ..errors import StepIdConflict
from ..persistence import StepRecord, WorkflowRepository
from ..persistence.models import utcnow

logger = logging.getLogger(__name__)

StepBody = Callable[[], Awaitable[Any]]


def body_name(body: StepBody) -> str:
    return getattr(body, "__qualname__", None) or type(body).__qualname__


class StepExecutor:
    """Runs a named unit of work at most once per workflow instance.

    A completed step's result is persisted under ``(instance_id, step_id)``;
    asking for the same step again returns the stored result without calling
    the body. Bodies that raise persist nothing, and the executor never retries
    them on its own.
    """

    def __init__(
        self,
        repository: WorkflowRepository,
        *,
        debug: bool = False,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._repository = repository
        self._debug = debug
        self._clock = clock

    async def run(self, instance_id: str, step_id: str, body: StepBody) -> Any:
        """Return the memoized result of ``step_id`` or execute ``body`` and memoize it.

        Results are normalized to JSON-compatible values so the first execution
        and every replay return equal data.
        """
        name = body_name(body)
        record = await self._repository.get_step(instance_id, step_id)
        if record is not None:
            if self._debug and record.body_name and record.body_name != name:
                raise StepIdConflict(
                    f"Step {step_id!r} of {instance_id} was memoized for {record.body_name}, "
                    f"now requested with {name}"
                )
            logger.debug(f"Replaying memoized step {step_id} for instance_id={instance_id}")
            return record.result

        result = to_jsonable_python(await body())
        await self._repository.save_step(
            StepRecord(
                instance_id=instance_id,
                step_id=step_id,
                result=result,
                body_name=name,
                completed_at=self._clock(),
            )
        )
        logger.debug(f"Step {step_id} completed for instance_id={instance_id}")
        return result
