"""PostgreSQL implementation of the workflow repository."""

from __future__ import annotations

import json
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

import asyncpg

from ..contracts import ActivityDetails, parse_details
from ..errors import InvalidRequest, NotFound, StorageUnavailable
from .models import (
    ActivityRecord,
    RepoRecord,
    SleepRecord,
    StepRecord,
    WorkflowInstance,
    utcnow,
)
from .repository import WorkflowRepository, check_instance_changes

_DRIVER_ERRORS = (OSError, asyncpg.PostgresError, asyncpg.InterfaceError)

_INSTANCE_COLUMNS = (
    "id",
    "repo_id",
    "title",
    "body",
    "issue_number",
    "url",
    "status",
    "triage_result",
    "fix_summary",
    "issue_comment",
    "pr_url",
    "pr_number",
    "retry_count",
    "resume_at",
    "created_at",
    "updated_at",
)


def _json_value(value: Any) -> Any:
    # asyncpg hands JSONB back as text unless a codec is registered
    if isinstance(value, str):
        return json.loads(value)
    return value


class PostgresWorkflowRepository(WorkflowRepository):
    """Persist workflow state using PostgreSQL."""

    def __init__(self, dsn: str):
        self._dsn = dsn
        self._initialized = False

    async def _connect(self) -> asyncpg.Connection:
        conn = await asyncpg.connect(self._dsn)
        if not self._initialized:
            await self._ensure_schema(conn)
            self._initialized = True
        return conn

    @asynccontextmanager
    async def _connection(self) -> AsyncIterator[asyncpg.Connection]:
        try:
            conn = await self._connect()
        except _DRIVER_ERRORS as exc:
            raise StorageUnavailable(f"Cannot connect to PostgreSQL: {exc}") from exc
        try:
            yield conn
        except _DRIVER_ERRORS as exc:
            raise StorageUnavailable(f"PostgreSQL error: {exc}") from exc
        finally:
            await conn.close()

    async def _ensure_schema(self, conn: asyncpg.Connection) -> None:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS repos (
                id TEXT PRIMARY KEY,
                full_name TEXT NOT NULL,
                organization_id TEXT,
                max_retries INTEGER NOT NULL
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS instances (
                id TEXT PRIMARY KEY,
                repo_id TEXT NOT NULL,
                title TEXT NOT NULL,
                body TEXT,
                issue_number INTEGER,
                url TEXT,
                status TEXT NOT NULL,
                triage_result JSONB,
                fix_summary TEXT,
                issue_comment TEXT,
                pr_url TEXT,
                pr_number INTEGER,
                retry_count INTEGER NOT NULL DEFAULT 0,
                resume_at TIMESTAMPTZ,
                created_at TIMESTAMPTZ NOT NULL,
                updated_at TIMESTAMPTZ
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS activity (
                id SERIAL PRIMARY KEY,
                instance_id TEXT NOT NULL REFERENCES instances(id) ON DELETE CASCADE,
                type TEXT NOT NULL,
                details JSONB NOT NULL,
                correlation_id TEXT,
                created_at TIMESTAMPTZ NOT NULL,
                UNIQUE (instance_id, correlation_id)
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS steps (
                instance_id TEXT NOT NULL,
                step_id TEXT NOT NULL,
                result JSONB,
                body_name TEXT,
                completed_at TIMESTAMPTZ NOT NULL,
                PRIMARY KEY (instance_id, step_id)
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS sleeps (
                instance_id TEXT NOT NULL,
                sleep_id TEXT NOT NULL,
                wake_at TIMESTAMPTZ NOT NULL,
                created_at TIMESTAMPTZ NOT NULL,
                PRIMARY KEY (instance_id, sleep_id)
            )
            """
        )

    @staticmethod
    def _record_to_instance(row: asyncpg.Record) -> WorkflowInstance:
        data = dict(row)
        data["triage_result"] = _json_value(data["triage_result"])
        return WorkflowInstance.model_validate(data)

    @staticmethod
    def _instance_params(instance: WorkflowInstance) -> list[Any]:
        data = instance.model_dump()
        if instance.triage_result is not None:
            data["triage_result"] = instance.triage_result.model_dump_json()
        return [data[column] for column in _INSTANCE_COLUMNS]

    # ------------------------------------------------------------------
    async def save_repo(self, repo: RepoRecord) -> None:
        async with self._connection() as conn:
            await conn.execute(
                """
                INSERT INTO repos (id, full_name, organization_id, max_retries)
                VALUES ($1, $2, $3, $4)
                ON CONFLICT (id) DO UPDATE
                SET full_name = $2, organization_id = $3, max_retries = $4
                """,
                repo.id,
                repo.full_name,
                repo.organization_id,
                repo.max_retries,
            )

    async def get_repo(self, repo_id: str) -> RepoRecord | None:
        async with self._connection() as conn:
            row = await conn.fetchrow(
                "SELECT id, full_name, organization_id, max_retries FROM repos WHERE id = $1",
                repo_id,
            )
        return RepoRecord.model_validate(dict(row)) if row else None

    async def create_instance(self, instance: WorkflowInstance) -> None:
        placeholders = ", ".join(f"${i}" for i in range(1, len(_INSTANCE_COLUMNS) + 1))
        async with self._connection() as conn:
            try:
                await conn.execute(
                    f"INSERT INTO instances ({', '.join(_INSTANCE_COLUMNS)}) VALUES ({placeholders})",
                    *self._instance_params(instance),
                )
            except asyncpg.UniqueViolationError as exc:
                raise InvalidRequest(f"Instance already exists: {instance.id}") from exc

    async def get_instance(self, instance_id: str) -> WorkflowInstance | None:
        async with self._connection() as conn:
            row = await conn.fetchrow(
                f"SELECT {', '.join(_INSTANCE_COLUMNS)} FROM instances WHERE id = $1",
                instance_id,
            )
        return self._record_to_instance(row) if row else None

    async def list_instances(self, status: Optional[str] = None) -> list[WorkflowInstance]:
        query = f"SELECT {', '.join(_INSTANCE_COLUMNS)} FROM instances"
        params: list[Any] = []
        if status is not None:
            query += " WHERE status = $1"
            params.append(status)
        async with self._connection() as conn:
            rows = await conn.fetch(query + " ORDER BY created_at", *params)
        return [self._record_to_instance(r) for r in rows]

    async def update_instance(self, instance_id: str, **changes: Any) -> WorkflowInstance:
        check_instance_changes(changes)
        current = await self.get_instance(instance_id)
        if current is None:
            raise NotFound(f"Instance not found: {instance_id}")
        updated = WorkflowInstance.model_validate(
            {**current.model_dump(), **changes, "updated_at": utcnow()}
        )
        columns = _INSTANCE_COLUMNS[1:]
        assignments = ", ".join(f"{column} = ${i}" for i, column in enumerate(columns, start=1))
        async with self._connection() as conn:
            await conn.execute(
                f"UPDATE instances SET {assignments} WHERE id = ${len(columns) + 1}",
                *self._instance_params(updated)[1:],
                instance_id,
            )
        return updated

    async def append_activity(
        self,
        instance_id: str,
        details: ActivityDetails,
        correlation_id: Optional[str] = None,
    ) -> int:
        async with self._connection() as conn:
            return await conn.fetchval(
                """
                INSERT INTO activity (instance_id, type, details, correlation_id, created_at)
                VALUES ($1, $2, $3, $4, $5)
                ON CONFLICT (instance_id, correlation_id) DO UPDATE
                SET details = EXCLUDED.details
                RETURNING id
                """,
                instance_id,
                details.type,
                details.model_dump_json(),
                correlation_id,
                utcnow(),
            )

    async def list_activity(self, instance_id: str) -> list[ActivityRecord]:
        async with self._connection() as conn:
            rows = await conn.fetch(
                "SELECT id, instance_id, type, details, correlation_id, created_at FROM activity WHERE instance_id = $1 ORDER BY id",
                instance_id,
            )
        return [
            ActivityRecord(
                id=r["id"],
                instance_id=r["instance_id"],
                type=r["type"],
                details=parse_details(_json_value(r["details"])),
                correlation_id=r["correlation_id"],
                created_at=r["created_at"],
            )
            for r in rows
        ]

    async def get_step(self, instance_id: str, step_id: str) -> StepRecord | None:
        async with self._connection() as conn:
            row = await conn.fetchrow(
                "SELECT instance_id, step_id, result, body_name, completed_at FROM steps WHERE instance_id = $1 AND step_id = $2",
                instance_id,
                step_id,
            )
        if not row:
            return None
        return StepRecord(
            instance_id=row["instance_id"],
            step_id=row["step_id"],
            result=_json_value(row["result"]),
            body_name=row["body_name"],
            completed_at=row["completed_at"],
        )

    async def save_step(self, record: StepRecord) -> None:
        async with self._connection() as conn:
            await conn.execute(
                """
                INSERT INTO steps (instance_id, step_id, result, body_name, completed_at)
                VALUES ($1, $2, $3, $4, $5)
                ON CONFLICT (instance_id, step_id) DO UPDATE
                SET result = $3, body_name = $4, completed_at = $5
                """,
                record.instance_id,
                record.step_id,
                json.dumps(record.result),
                record.body_name,
                record.completed_at,
            )

    async def get_sleep(self, instance_id: str, sleep_id: str) -> SleepRecord | None:
        async with self._connection() as conn:
            row = await conn.fetchrow(
                "SELECT instance_id, sleep_id, wake_at, created_at FROM sleeps WHERE instance_id = $1 AND sleep_id = $2",
                instance_id,
                sleep_id,
            )
        return SleepRecord.model_validate(dict(row)) if row else None

    async def save_sleep(self, record: SleepRecord) -> None:
        async with self._connection() as conn:
            await conn.execute(
                """
                INSERT INTO sleeps (instance_id, sleep_id, wake_at, created_at)
                VALUES ($1, $2, $3, $4)
                ON CONFLICT (instance_id, sleep_id) DO NOTHING
                """,
                record.instance_id,
                record.sleep_id,
                record.wake_at,
                record.created_at,
            )
