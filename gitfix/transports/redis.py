"""Redis pub/sub transport for cross-process live channels."""

from __future__ import annotations

import logging
from typing import Any, Iterable, Optional

import redis.asyncio as redis
from pydantic import ValidationError

from ..contracts import StreamMessage
from .base import BaseTransport, Subscription

logger = logging.getLogger(__name__)

# Upper bound on a single poll so lifespan and close() are honoured promptly
_POLL_SECONDS = 1.0


def _redis_channel(channel: str) -> str:
    return f"gitfix:{channel}"


class _PubSubSubscription(Subscription):
    def __init__(
        self,
        pubsub: Any,
        channel: str,
        topics: Optional[Iterable[str]],
        lifespan: Optional[float],
    ) -> None:
        super().__init__(channel, topics, lifespan)
        self._pubsub = pubsub

    async def _receive(self, timeout: Optional[float]) -> Optional[StreamMessage]:
        poll = _POLL_SECONDS if timeout is None else max(0.0, min(timeout, _POLL_SECONDS))
        raw = await self._pubsub.get_message(ignore_subscribe_messages=True, timeout=poll)
        if raw is None:
            return None
        try:
            return StreamMessage.from_json(raw["data"])
        except ValidationError as e:
            logger.warning(f"Dropping malformed message on {self.channel}: {e}")
            return None

    async def close(self) -> None:
        if self.closed:
            return
        await super().close()
        await self._pubsub.unsubscribe(_redis_channel(self.channel))
        await self._pubsub.aclose()


class RedisTransport(BaseTransport):
    """Redis-based transport broadcasting over pub/sub channels."""

    def __init__(
        self,
        host: str = "localhost",
        port: int = 6379,
        db: int = 0,
        password: Optional[str] = None,
    ) -> None:
        self.host = host
        self.port = port
        self.db = db
        self.password = password
        self._redis: Optional[Any] = None

    async def connect(self) -> None:
        """Connect to Redis."""
        self._redis = redis.Redis(
            host=self.host,
            port=self.port,
            db=self.db,
            password=self.password,
            decode_responses=True,
        )
        # Test connection
        await self._redis.ping()

    async def disconnect(self) -> None:
        """Disconnect from Redis."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None

    async def publish(self, message: StreamMessage) -> None:
        """Publish message on the Redis channel of its instance."""
        if not self._redis:
            await self.connect()
        await self._redis.publish(_redis_channel(message.channel), message.to_json())

    async def subscribe(
        self,
        channel: str,
        topics: Optional[Iterable[str]] = None,
        lifespan: Optional[float] = None,
    ) -> Subscription:
        if not self._redis:
            await self.connect()
        pubsub = self._redis.pubsub()
        await pubsub.subscribe(_redis_channel(channel))
        return _PubSubSubscription(pubsub, channel, topics, lifespan)
