"""Workflow engine: runs, suspends and resumes instances."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Optional

from ..constants import ACTIVE_STATUSES
from ..errors import NotFound, WorkflowSuspended
from ..persistence import WorkflowRepository
from ..persistence.models import utcnow
from ..transports import BaseTransport
from .context import WorkflowContext
from .event_log import EventLog
from .scheduler import Scheduler, Sleeper
from .steps import StepExecutor

logger = logging.getLogger(__name__)

WorkflowFn = Callable[[WorkflowContext], Awaitable[Any]]


class WorkflowEngine:
    """Executes a workflow definition for instances, one task per instance.

    Running an instance replays its definition from the top: memoized steps
    return their stored results and elapsed sleeps return immediately, so a
    crashed or suspended run continues where it stopped.
    """

    def __init__(
        self,
        repository: WorkflowRepository,
        workflow: WorkflowFn,
        transport: Optional[BaseTransport] = None,
        *,
        clock: Callable[[], datetime] = utcnow,
        sleeper: Sleeper = asyncio.sleep,
        time_scale: float = 1.0,
        max_inline_sleep: Optional[float] = None,
        debug: bool = False,
    ) -> None:
        self.repository = repository
        self.transport = transport
        self.log = EventLog(repository, transport)
        self._workflow = workflow
        self._clock = clock
        self._time_scale = time_scale
        self._executor = StepExecutor(repository, debug=debug, clock=clock)
        self._scheduler = Scheduler(
            repository, clock=clock, sleeper=sleeper, max_inline_sleep=max_inline_sleep
        )
        self._tasks: Dict[str, asyncio.Task] = {}

    def is_running(self, instance_id: str) -> bool:
        task = self._tasks.get(instance_id)
        return task is not None and not task.done()

    async def enqueue(self, instance_id: str) -> asyncio.Task:
        """Start running ``instance_id`` in the background and return its task."""
        if self.is_running(instance_id):
            logger.warning(f"Instance {instance_id} already running; ignoring duplicate trigger")
            return self._tasks[instance_id]
        if await self.repository.get_instance(instance_id) is None:
            raise NotFound(f"Instance not found: {instance_id}")

        task = asyncio.create_task(self.run(instance_id), name=f"workflow:{instance_id}")
        self._tasks[instance_id] = task
        task.add_done_callback(lambda t: self._on_task_done(instance_id, t))
        logger.info(f"Enqueued workflow for instance_id={instance_id}")
        return task

    def _on_task_done(self, instance_id: str, task: asyncio.Task) -> None:
        if self._tasks.get(instance_id) is task:
            del self._tasks[instance_id]
        if task.cancelled():
            logger.warning(f"Workflow task cancelled for instance_id={instance_id}")
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Workflow stalled for instance_id={instance_id}: {exc!r}")

    async def wait(self, instance_id: str) -> Any:
        """Wait for the running task of ``instance_id`` and return its result.

        Returns ``None`` when no run is in progress; finished tasks are not kept.
        """
        task = self._tasks.get(instance_id)
        if task is None:
            return None
        return await task

    def context_for(self, instance) -> WorkflowContext:
        return WorkflowContext(
            instance,
            self.repository,
            self._executor,
            self._scheduler,
            self.log,
            transport=self.transport,
            time_scale=self._time_scale,
        )

    async def run(self, instance_id: str) -> Any:
        """Run (or replay) the workflow for ``instance_id`` in the current task.

        Returns the workflow's result, or ``None`` when the instance is not
        active or the run suspended on a long sleep. Engine faults propagate and
        leave the instance in its last durably recorded state.
        """
        instance = await self.repository.get_instance(instance_id)
        if instance is None:
            raise NotFound(f"Instance not found: {instance_id}")
        if not instance.is_active:
            logger.info(f"Instance {instance_id} is {instance.status}; nothing to run")
            return None

        logger.info(f"Running workflow for instance_id={instance_id} (status={instance.status})")
        ctx = self.context_for(instance)
        try:
            result = await self._workflow(ctx)
        except WorkflowSuspended as suspended:
            await self.repository.update_instance(instance_id, resume_at=suspended.wake_at)
            return None
        except Exception as e:
            logger.error(f"Workflow failed for instance_id={instance_id}: {e}")
            raise

        if instance.resume_at is not None:
            await self.repository.update_instance(instance_id, resume_at=None)
        logger.info(f"Workflow finished for instance_id={instance_id}: {result}")
        return result

    async def resume_pending(self, include_stalled: bool = False) -> list[str]:
        """Enqueue active instances whose suspension has elapsed.

        With ``include_stalled`` active instances that are not suspended and
        not running here (for example after a crash) are enqueued as well.
        """
        now = self._clock()
        resumed: list[str] = []
        for status in sorted(ACTIVE_STATUSES):
            for instance in await self.repository.list_instances(status):
                if self.is_running(instance.id):
                    continue
                if instance.resume_at is None and not include_stalled:
                    continue
                if instance.resume_at is not None and instance.resume_at > now:
                    continue
                await self.enqueue(instance.id)
                resumed.append(instance.id)
        return resumed
