"""Live channels that stream workflow activity to subscribers."""

from __future__ import annotations

import os
from typing import Optional

from ..config import GitfixConfig, load_config
from .base import BaseTransport, Subscription
from .inmemory import InMemoryTransport


def get_transport(
    backend: Optional[str] = None, config: Optional[GitfixConfig] = None
) -> BaseTransport:
    """Return the transport workflows publish their live activity on.

    ``inmemory`` fans out inside this process only, which suits tests and a
    worker that also serves its watchers. ``redis`` lets ``gitfix issue
    watch`` in another process follow an instance a worker is driving.
    ``GITFIX_TRANSPORT`` overrides the configured backend.
    """
    config = config or load_config()
    backend = (backend or os.getenv("GITFIX_TRANSPORT") or config.transport.backend).lower()

    if backend == "inmemory":
        return InMemoryTransport()
    if backend == "redis":
        from .redis import RedisTransport

        return RedisTransport(**config.transport.redis.model_dump())
    raise ValueError(f"Unsupported transport backend: {backend}")


__all__ = ["BaseTransport", "Subscription", "get_transport"]
