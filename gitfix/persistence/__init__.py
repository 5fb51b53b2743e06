"""Durable storage for workflow instances, activity logs, step memos and sleeps.

Backends are selected by database URL: ``sqlite://<path>``, a
``postgres://``/``postgresql://`` DSN, or ``memory://``, which is also used
when nothing is configured.
"""

from __future__ import annotations

import os
from typing import Dict, Optional

from ..config import GitfixConfig, load_config
from .inmemory import InMemoryWorkflowRepository
from .models import (
    ActivityRecord,
    RepoRecord,
    SleepRecord,
    StepRecord,
    WorkflowInstance,
)
from .postgres import PostgresWorkflowRepository
from .repository import WorkflowRepository
from .sqlite import SQLiteWorkflowRepository

MEMORY_URL = "memory://"

_repositories: Dict[str, WorkflowRepository] = {}


def _resolve_url(database_url: Optional[str], config: Optional[GitfixConfig]) -> str:
    if database_url:
        return database_url
    env_url = os.getenv("GITFIX_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_url:
        return env_url
    return (config or load_config()).database_url or MEMORY_URL


def _open(url: str) -> WorkflowRepository:
    scheme, _, location = url.partition("://")
    if scheme == "memory":
        return InMemoryWorkflowRepository()
    if scheme == "sqlite":
        return SQLiteWorkflowRepository(location)
    if scheme in ("postgres", "postgresql"):
        return PostgresWorkflowRepository(url)
    raise ValueError(f"Unsupported database backend: {url}")


def get_repository(
    database_url: Optional[str] = None, config: Optional[GitfixConfig] = None
) -> WorkflowRepository:
    """Return the repository for a database URL, opening it on first use.

    The URL comes from ``database_url``, then ``GITFIX_DATABASE_URL`` or
    ``DATABASE_URL``, then ``config.database_url``. Repositories are cached
    per URL, so the engine, the service and every CLI command of one process
    read and write the same store.
    """
    url = _resolve_url(database_url, config)
    if url not in _repositories:
        _repositories[url] = _open(url)
    return _repositories[url]


__all__ = [
    "ActivityRecord",
    "InMemoryWorkflowRepository",
    "PostgresWorkflowRepository",
    "RepoRecord",
    "SQLiteWorkflowRepository",
    "SleepRecord",
    "StepRecord",
    "WorkflowInstance",
    "WorkflowRepository",
    "get_repository",
]
