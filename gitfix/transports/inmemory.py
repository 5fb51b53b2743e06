"""In-memory transport for tests and single-process deployments."""

from __future__ import annotations

import asyncio
from collections import defaultdict
from typing import Dict, Iterable, Optional, Set

from ..contracts import StreamMessage
from .base import BaseTransport, Subscription


class _QueueSubscription(Subscription):
    def __init__(
        self,
        transport: "InMemoryTransport",
        channel: str,
        topics: Optional[Iterable[str]],
        lifespan: Optional[float],
    ) -> None:
        super().__init__(channel, topics, lifespan)
        self._transport = transport
        self.queue: asyncio.Queue[StreamMessage] = asyncio.Queue()

    async def _receive(self, timeout: Optional[float]) -> Optional[StreamMessage]:
        try:
            return await asyncio.wait_for(self.queue.get(), timeout)
        except asyncio.TimeoutError:
            return None

    async def close(self) -> None:
        await super().close()
        self._transport._detach(self)


class InMemoryTransport(BaseTransport):
    """Fan out each published message to every open subscription of its channel."""

    def __init__(self) -> None:
        self._subscribers: Dict[str, Set[_QueueSubscription]] = defaultdict(set)

    async def publish(self, message: StreamMessage) -> None:
        """Deliver message to the queues of current subscribers."""
        for subscription in list(self._subscribers.get(message.channel, ())):
            subscription.queue.put_nowait(message)

    async def subscribe(
        self,
        channel: str,
        topics: Optional[Iterable[str]] = None,
        lifespan: Optional[float] = None,
    ) -> Subscription:
        subscription = _QueueSubscription(self, channel, topics, lifespan)
        self._subscribers[channel].add(subscription)
        return subscription

    def subscriber_count(self, channel: str) -> int:
        return len(self._subscribers.get(channel, ()))

    def _detach(self, subscription: _QueueSubscription) -> None:
        subscribers = self._subscribers.get(subscription.channel)
        if subscribers is not None:
            subscribers.discard(subscription)
            if not subscribers:
                del self._subscribers[subscription.channel]
