"""Reduce the durable snapshot and live messages into one timeline view.

A message whose correlation id matches an existing entry replaces that entry
in place; anything else is appended. This collapses ``started`` → partial
``streaming`` updates → ``completed`` into a single row, and lets a viewer that
connects mid-run (or reconnects after a gap) merge live messages into the
snapshot it read from the log without duplicating rows.
"""

from __future__ import annotations

from typing import Iterable, List, Optional

from pydantic import BaseModel

from .contracts import ActivityDetails, StreamMessage
from .persistence import ActivityRecord


class TimelineEntry(BaseModel):
    topic: str
    data: ActivityDetails
    correlation_id: Optional[str] = None
    record_id: Optional[int] = None

    @property
    def in_progress(self) -> bool:
        return self.data.status in ("started", "streaming")


class Timeline:
    """Ordered view over an instance's activity."""

    def __init__(self, records: Iterable[ActivityRecord] = ()) -> None:
        self._entries: List[TimelineEntry] = []
        for record in records:
            self._upsert(
                TimelineEntry(
                    topic=record.type,
                    data=record.details,
                    correlation_id=record.correlation_id,
                    record_id=record.id,
                )
            )

    @property
    def entries(self) -> list[TimelineEntry]:
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def apply(self, message: StreamMessage) -> TimelineEntry:
        """Fold one live message into the view and return the resulting entry."""
        return self._upsert(
            TimelineEntry(
                topic=message.topic,
                data=message.data,
                correlation_id=message.correlation_id,
            )
        )

    def apply_all(self, messages: Iterable[StreamMessage]) -> "Timeline":
        for message in messages:
            self.apply(message)
        return self

    def _upsert(self, entry: TimelineEntry) -> TimelineEntry:
        if entry.correlation_id is not None:
            for idx, existing in enumerate(self._entries):
                if existing.correlation_id == entry.correlation_id:
                    if entry.record_id is None:
                        entry = entry.model_copy(update={"record_id": existing.record_id})
                    self._entries[idx] = entry
                    return entry
        self._entries.append(entry)
        return entry

    def latest(self, topic: str) -> Optional[TimelineEntry]:
        for entry in reversed(self._entries):
            if entry.topic == topic:
                return entry
        return None
