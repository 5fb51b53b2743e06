"""Base transport interface for gitfix live channels."""

from __future__ import annotations

import abc
import asyncio
from typing import AsyncIterator, Iterable, Optional

from ..contracts import StreamMessage


class Subscription(metaclass=abc.ABCMeta):
    """Live, cancelable sequence of messages published on one channel.

    Only messages published after the subscription was opened are delivered.
    Use as an async iterator and close it (or use ``async with``) when done.
    """

    def __init__(
        self,
        channel: str,
        topics: Optional[Iterable[str]] = None,
        lifespan: Optional[float] = None,
    ) -> None:
        self.channel = channel
        self.topics = frozenset(topics) if topics is not None else None
        self._deadline = (
            asyncio.get_running_loop().time() + lifespan if lifespan is not None else None
        )
        self.closed = False

    def __aiter__(self) -> AsyncIterator[StreamMessage]:
        return self

    async def __anext__(self) -> StreamMessage:
        while not self.closed:
            timeout = self._remaining()
            if timeout is not None and timeout <= 0:
                break
            message = await self._receive(timeout)
            if message is None:
                continue
            if self.topics is None or message.topic in self.topics:
                return message
        await self.close()
        raise StopAsyncIteration

    def _remaining(self) -> Optional[float]:
        if self._deadline is None:
            return None
        return self._deadline - asyncio.get_running_loop().time()

    @abc.abstractmethod
    async def _receive(self, timeout: Optional[float]) -> Optional[StreamMessage]:
        """Wait up to ``timeout`` seconds for the next message, ``None`` if none arrived."""
        raise NotImplementedError

    async def close(self) -> None:
        """Stop receiving messages."""
        self.closed = True

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()


class BaseTransport(metaclass=abc.ABCMeta):
    """Abstract base transport for live channel brokers."""

    async def connect(self) -> None:
        """Open connection to broker (no-op by default)."""
        pass

    async def disconnect(self) -> None:
        """Close connection to broker (no-op by default)."""
        pass

    @abc.abstractmethod
    async def publish(self, message: StreamMessage) -> None:
        """Broadcast ``message`` to every current subscriber of its channel."""
        raise NotImplementedError

    @abc.abstractmethod
    async def subscribe(
        self,
        channel: str,
        topics: Optional[Iterable[str]] = None,
        lifespan: Optional[float] = None,
    ) -> Subscription:
        """Open a live subscription to ``channel``.

        Args:
            channel: The channel to subscribe to
            topics: Topics to deliver. ``None`` delivers every topic.
            lifespan: Maximum time in seconds to keep the subscription open. If None, runs indefinitely.
        """
        raise NotImplementedError
