"""Per-run handle a workflow definition uses to issue steps, sleeps and publishes."""

from __future__ import annotations

from datetime import timedelta
from typing import Any, Optional

from ..constants import channel_for
from ..contracts import ActivityDetails, StreamMessage
from ..errors import StepIdConflict
from ..persistence import WorkflowInstance, WorkflowRepository
from ..transports import BaseTransport
from .durations import Duration, parse_duration
from .event_log import EventLog, publish_quietly
from .scheduler import Scheduler
from .steps import StepBody, StepExecutor


class WorkflowContext:
    """Bound to one instance for the duration of one (re)play.

    Step and sleep boundaries are the only suspension points: everything with a
    side effect belongs inside :meth:`run`, and every wait goes through
    :meth:`sleep`.
    """

    def __init__(
        self,
        instance: WorkflowInstance,
        repository: WorkflowRepository,
        executor: StepExecutor,
        scheduler: Scheduler,
        log: EventLog,
        transport: Optional[BaseTransport] = None,
        time_scale: float = 1.0,
    ) -> None:
        self.instance = instance
        self.repository = repository
        self.log = log
        self._executor = executor
        self._scheduler = scheduler
        self._transport = transport
        self._time_scale = time_scale
        self._step_ids: set[str] = set()
        self._sleep_ids: set[str] = set()

    @property
    def instance_id(self) -> str:
        return self.instance.id

    @property
    def channel(self) -> str:
        return channel_for(self.instance.id)

    async def run(self, step_id: str, body: StepBody) -> Any:
        """Execute ``body`` at most once for this instance."""
        if step_id in self._step_ids:
            raise StepIdConflict(f"Step id {step_id!r} used twice in instance {self.instance_id}")
        self._step_ids.add(step_id)
        return await self._executor.run(self.instance_id, step_id, body)

    async def has_completed(self, step_id: str) -> bool:
        """Whether ``step_id`` is already memoized, i.e. this part is a replay."""
        return await self.repository.get_step(self.instance_id, step_id) is not None

    async def sleep(self, sleep_id: str, duration: Duration) -> None:
        """Pause for ``duration`` (scaled by the configured time scale)."""
        if sleep_id in self._sleep_ids:
            raise StepIdConflict(f"Sleep id {sleep_id!r} used twice in instance {self.instance_id}")
        self._sleep_ids.add(sleep_id)
        scaled = timedelta(seconds=parse_duration(duration).total_seconds() * self._time_scale)
        await self._scheduler.sleep(self.instance_id, sleep_id, scaled)

    async def publish(
        self, details: ActivityDetails, correlation_id: Optional[str] = None
    ) -> StreamMessage:
        """Broadcast ``details`` on this instance's channel. Not persisted."""
        message = StreamMessage(
            channel=self.channel,
            topic=details.type,
            data=details,
            correlation_id=correlation_id,
        )
        await publish_quietly(self._transport, message)
        return message
