"""Append-only activity log with optional live fan-out."""

from __future__ import annotations

import logging
from typing import Optional

from ..constants import channel_for
from ..contracts import ActivityDetails, StreamMessage
from ..persistence import ActivityRecord, WorkflowRepository
from ..transports import BaseTransport

logger = logging.getLogger(__name__)


async def publish_quietly(transport: Optional[BaseTransport], message: StreamMessage) -> None:
    """Publish ``message`` without letting a broker failure reach the workflow."""
    if transport is None:
        return
    try:
        await transport.publish(message)
    except Exception as e:
        logger.warning(
            f"Failed to publish {message.topic} on {message.channel}: {e}",
            exc_info=True,
        )


class EventLog:
    """Durable, ordered record of everything an instance did."""

    def __init__(
        self,
        repository: WorkflowRepository,
        transport: Optional[BaseTransport] = None,
    ) -> None:
        self._repository = repository
        self._transport = transport

    async def append(
        self,
        instance_id: str,
        details: ActivityDetails,
        correlation_id: Optional[str] = None,
        publish: bool = False,
    ) -> int:
        """Durably append ``details`` and return the record id.

        With ``publish`` the same payload is also broadcast on the instance's
        live channel after the write succeeds.
        """
        record_id = await self._repository.append_activity(instance_id, details, correlation_id)
        logger.debug(f"Appended {details.type} record {record_id} for instance_id={instance_id}")
        if publish:
            await publish_quietly(
                self._transport,
                StreamMessage(
                    channel=channel_for(instance_id),
                    topic=details.type,
                    data=details,
                    correlation_id=correlation_id,
                ),
            )
        return record_id

    async def list_by_instance(self, instance_id: str) -> list[ActivityRecord]:
        """Return the instance's records, oldest first."""
        return await self._repository.list_activity(instance_id)
