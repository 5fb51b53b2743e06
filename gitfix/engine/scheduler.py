"""Durable sleeps that survive process restarts."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Awaitable, Callable, Optional

from ..errors import WorkflowSuspended
from ..persistence import SleepRecord, WorkflowRepository
from ..persistence.models import utcnow
from .durations import Duration, parse_duration

logger = logging.getLogger(__name__)

Sleeper = Callable[[float], Awaitable[None]]


class Scheduler:
    """Suspends a workflow until an absolute, persisted wake time.

    The wake time is stored the first time a sleep id is encountered, so a
    replay after a restart only waits for whatever wall-clock time is left.
    Waits longer than ``max_inline_sleep`` seconds raise
    :class:`~gitfix.errors.WorkflowSuspended` so the engine can release the
    worker and resume the instance later.
    """

    def __init__(
        self,
        repository: WorkflowRepository,
        *,
        clock: Callable[[], datetime] = utcnow,
        sleeper: Sleeper = asyncio.sleep,
        max_inline_sleep: Optional[float] = None,
    ) -> None:
        self._repository = repository
        self._clock = clock
        self._sleeper = sleeper
        self._max_inline_sleep = max_inline_sleep

    async def wake_time(self, instance_id: str, sleep_id: str, duration: Duration) -> datetime:
        """Return the persisted wake time, recording it on first encounter."""
        record = await self._repository.get_sleep(instance_id, sleep_id)
        if record is None:
            now = self._clock()
            record = SleepRecord(
                instance_id=instance_id,
                sleep_id=sleep_id,
                wake_at=now + parse_duration(duration),
                created_at=now,
            )
            await self._repository.save_sleep(record)
        return record.wake_at

    async def sleep(self, instance_id: str, sleep_id: str, duration: Duration) -> None:
        wake_at = await self.wake_time(instance_id, sleep_id, duration)
        remaining = (wake_at - self._clock()).total_seconds()
        if remaining <= 0:
            return
        if self._max_inline_sleep is not None and remaining > self._max_inline_sleep:
            logger.info(
                f"Suspending instance_id={instance_id} on {sleep_id} until {wake_at.isoformat()}"
            )
            raise WorkflowSuspended(instance_id, sleep_id, wake_at)
        await self._sleeper(remaining)
