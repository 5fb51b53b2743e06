"""SQLite implementation of the workflow repository."""

from __future__ import annotations

import asyncio
import json
import sqlite3
import threading
from pathlib import Path
from typing import Any, Callable, Optional, TypeVar

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

T = TypeVar("T")

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


class SQLiteWorkflowRepository(WorkflowRepository):
    """Persist workflow state using SQLite."""

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        self._lock = threading.Lock()
        try:
            self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._ensure_schema()
        except sqlite3.Error as exc:
            raise StorageUnavailable(f"Cannot open SQLite database {self.db_path}: {exc}") from exc

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        cur = self._conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS repos (
                id TEXT PRIMARY KEY,
                full_name TEXT NOT NULL,
                organization_id TEXT,
                max_retries INTEGER NOT NULL
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS instances (
                id TEXT PRIMARY KEY,
                repo_id TEXT NOT NULL,
                title TEXT NOT NULL,
                body TEXT,
                issue_number INTEGER,
                url TEXT,
                status TEXT NOT NULL,
                triage_result TEXT,
                fix_summary TEXT,
                issue_comment TEXT,
                pr_url TEXT,
                pr_number INTEGER,
                retry_count INTEGER NOT NULL DEFAULT 0,
                resume_at TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS activity (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                instance_id TEXT NOT NULL REFERENCES instances(id) ON DELETE CASCADE,
                type TEXT NOT NULL,
                details TEXT NOT NULL,
                correlation_id TEXT,
                created_at TEXT NOT NULL,
                UNIQUE (instance_id, correlation_id)
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS steps (
                instance_id TEXT NOT NULL,
                step_id TEXT NOT NULL,
                result TEXT,
                body_name TEXT,
                completed_at TEXT NOT NULL,
                PRIMARY KEY (instance_id, step_id)
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS sleeps (
                instance_id TEXT NOT NULL,
                sleep_id TEXT NOT NULL,
                wake_at TEXT NOT NULL,
                created_at TEXT NOT NULL,
                PRIMARY KEY (instance_id, sleep_id)
            )
            """
        )
        self._conn.commit()

    def close(self) -> None:
        self._conn.close()

    # ------------------------------------------------------------------
    # Helper methods
    def _guarded(self, fn: Callable[[], T]) -> T:
        with self._lock:
            try:
                return fn()
            except sqlite3.Error as exc:
                self._conn.rollback()
                raise StorageUnavailable(f"SQLite error on {self.db_path}: {exc}") from exc

    def _execute(self, query: str, *params: Any) -> None:
        def _run() -> None:
            cur = self._conn.cursor()
            cur.execute(query, params)
            self._conn.commit()

        self._guarded(_run)

    def _fetchone(self, query: str, *params: Any) -> sqlite3.Row | None:
        def _run() -> sqlite3.Row | None:
            cur = self._conn.cursor()
            cur.execute(query, params)
            return cur.fetchone()

        return self._guarded(_run)

    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        def _run() -> list[sqlite3.Row]:
            cur = self._conn.cursor()
            cur.execute(query, params)
            return cur.fetchall()

        return self._guarded(_run)

    @staticmethod
    def _row_to_instance(row: sqlite3.Row) -> WorkflowInstance:
        data = dict(row)
        if data["triage_result"]:
            data["triage_result"] = json.loads(data["triage_result"])
        return WorkflowInstance.model_validate(data)

    @staticmethod
    def _instance_params(instance: WorkflowInstance) -> list[Any]:
        data = instance.model_dump(mode="json")
        if data["triage_result"] is not None:
            data["triage_result"] = json.dumps(data["triage_result"])
        return [data[column] for column in _INSTANCE_COLUMNS]

    # ------------------------------------------------------------------
    # Repository API
    async def save_repo(self, repo: RepoRecord) -> None:
        await asyncio.to_thread(
            self._execute,
            "INSERT OR REPLACE INTO repos (id, full_name, organization_id, max_retries) VALUES (?, ?, ?, ?)",
            repo.id,
            repo.full_name,
            repo.organization_id,
            repo.max_retries,
        )

    async def get_repo(self, repo_id: str) -> RepoRecord | None:
        row = await asyncio.to_thread(
            self._fetchone,
            "SELECT id, full_name, organization_id, max_retries FROM repos WHERE id = ?",
            repo_id,
        )
        return RepoRecord.model_validate(dict(row)) if row else None

    async def create_instance(self, instance: WorkflowInstance) -> None:
        placeholders = ", ".join("?" for _ in _INSTANCE_COLUMNS)

        def _insert() -> None:
            try:
                self._conn.execute(
                    f"INSERT INTO instances ({', '.join(_INSTANCE_COLUMNS)}) VALUES ({placeholders})",
                    self._instance_params(instance),
                )
            except sqlite3.IntegrityError as exc:
                self._conn.rollback()
                raise InvalidRequest(f"Instance already exists: {instance.id}") from exc
            self._conn.commit()

        await asyncio.to_thread(self._guarded, _insert)

    async def get_instance(self, instance_id: str) -> WorkflowInstance | None:
        row = await asyncio.to_thread(
            self._fetchone,
            f"SELECT {', '.join(_INSTANCE_COLUMNS)} FROM instances WHERE id = ?",
            instance_id,
        )
        return self._row_to_instance(row) if row else None

    async def list_instances(self, status: Optional[str] = None) -> list[WorkflowInstance]:
        query = f"SELECT {', '.join(_INSTANCE_COLUMNS)} FROM instances"
        params: list[Any] = []
        if status is not None:
            query += " WHERE status = ?"
            params.append(status)
        rows = await asyncio.to_thread(self._fetchall, query + " ORDER BY created_at", *params)
        return [self._row_to_instance(r) for r in rows]

    async def update_instance(self, instance_id: str, **changes: Any) -> WorkflowInstance:
        check_instance_changes(changes)
        current = await self.get_instance(instance_id)
        if current is None:
            raise NotFound(f"Instance not found: {instance_id}")
        updated = WorkflowInstance.model_validate(
            {**current.model_dump(), **changes, "updated_at": utcnow()}
        )
        assignments = ", ".join(f"{column} = ?" for column in _INSTANCE_COLUMNS[1:])
        params = self._instance_params(updated)
        await asyncio.to_thread(
            self._execute,
            f"UPDATE instances SET {assignments} WHERE id = ?",
            *params[1:],
            instance_id,
        )
        return updated

    async def append_activity(
        self,
        instance_id: str,
        details: ActivityDetails,
        correlation_id: Optional[str] = None,
    ) -> int:
        payload = details.model_dump_json()

        def _append() -> int:
            cur = self._conn.cursor()
            if correlation_id is not None:
                cur.execute(
                    "SELECT id FROM activity WHERE instance_id = ? AND correlation_id = ?",
                    (instance_id, correlation_id),
                )
                existing = cur.fetchone()
                if existing:
                    cur.execute(
                        "UPDATE activity SET details = ? WHERE id = ?",
                        (payload, existing["id"]),
                    )
                    self._conn.commit()
                    return existing["id"]
            cur.execute(
                "INSERT INTO activity (instance_id, type, details, correlation_id, created_at) VALUES (?, ?, ?, ?, ?)",
                (instance_id, details.type, payload, correlation_id, utcnow().isoformat()),
            )
            self._conn.commit()
            return cur.lastrowid

        return await asyncio.to_thread(self._guarded, _append)

    async def list_activity(self, instance_id: str) -> list[ActivityRecord]:
        rows = await asyncio.to_thread(
            self._fetchall,
            "SELECT id, instance_id, type, details, correlation_id, created_at FROM activity WHERE instance_id = ? ORDER BY id",
            instance_id,
        )
        return [
            ActivityRecord(
                id=r["id"],
                instance_id=r["instance_id"],
                type=r["type"],
                details=parse_details(r["details"]),
                correlation_id=r["correlation_id"],
                created_at=r["created_at"],
            )
            for r in rows
        ]

    async def get_step(self, instance_id: str, step_id: str) -> StepRecord | None:
        row = await asyncio.to_thread(
            self._fetchone,
            "SELECT instance_id, step_id, result, body_name, completed_at FROM steps WHERE instance_id = ? AND step_id = ?",
            instance_id,
            step_id,
        )
        if not row:
            return None
        return StepRecord(
            instance_id=row["instance_id"],
            step_id=row["step_id"],
            result=json.loads(row["result"]) if row["result"] is not None else None,
            body_name=row["body_name"],
            completed_at=row["completed_at"],
        )

    async def save_step(self, record: StepRecord) -> None:
        await asyncio.to_thread(
            self._execute,
            "INSERT OR REPLACE INTO steps (instance_id, step_id, result, body_name, completed_at) VALUES (?, ?, ?, ?, ?)",
            record.instance_id,
            record.step_id,
            json.dumps(record.result),
            record.body_name,
            record.completed_at.isoformat(),
        )

    async def get_sleep(self, instance_id: str, sleep_id: str) -> SleepRecord | None:
        row = await asyncio.to_thread(
            self._fetchone,
            "SELECT instance_id, sleep_id, wake_at, created_at FROM sleeps WHERE instance_id = ? AND sleep_id = ?",
            instance_id,
            sleep_id,
        )
        return SleepRecord.model_validate(dict(row)) if row else None

    async def save_sleep(self, record: SleepRecord) -> None:
        await asyncio.to_thread(
            self._execute,
            "INSERT OR REPLACE INTO sleeps (instance_id, sleep_id, wake_at, created_at) VALUES (?, ?, ?, ?)",
            record.instance_id,
            record.sleep_id,
            record.wake_at.isoformat(),
            record.created_at.isoformat(),
        )
