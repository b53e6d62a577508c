"""SQLite implementation of the job repository."""

from __future__ import annotations

import asyncio
import sqlite3
from pathlib import Path
from typing import Any

from ..contracts import JobFilter, JobRecord, Task
from .repository import JobRepository


class SQLiteJobRepository(JobRepository):
    """Persist job records and tasks using SQLite.

    Records are stored as JSON documents next to a few indexed columns used
    for filtering.
    """

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        cur = self._conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS jobs (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                status TEXT NOT NULL,
                data TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS tasks (
                id TEXT PRIMARY KEY,
                job_id TEXT NOT NULL,
                status TEXT NOT NULL,
                data TEXT NOT NULL,
                created_at TEXT NOT NULL
            )
            """
        )
        self._conn.commit()

    # ------------------------------------------------------------------
    # Helper methods
    def _execute(self, query: str, *params: Any) -> None:
        cur = self._conn.cursor()
        cur.execute(query, params)
        self._conn.commit()

    def _fetchone(self, query: str, *params: Any) -> sqlite3.Row | None:
        cur = self._conn.cursor()
        cur.execute(query, params)
        return cur.fetchone()

    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        cur = self._conn.cursor()
        cur.execute(query, params)
        return cur.fetchall()

    def close(self) -> None:
        self._conn.close()

    # ------------------------------------------------------------------
    # Repository API
    async def load_job(self, job_id: str) -> JobRecord | None:
        row = await asyncio.to_thread(
            self._fetchone, "SELECT data FROM jobs WHERE id = ?", job_id
        )
        if not row:
            return None
        return JobRecord.model_validate_json(row["data"])

    async def save_job(self, record: JobRecord) -> None:
        await asyncio.to_thread(
            self._execute,
            """
            INSERT OR REPLACE INTO jobs (id, name, status, data, updated_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            record.id,
            record.name,
            record.status.value,
            record.model_dump_json(),
            record.updated_at.isoformat(),
        )

    async def delete_job(self, job_id: str) -> None:
        await asyncio.to_thread(self._execute, "DELETE FROM jobs WHERE id = ?", job_id)

    async def list_jobs(self, job_filter: JobFilter | None = None) -> list[JobRecord]:
        job_filter = job_filter or JobFilter()
        clauses: list[str] = []
        params: list[Any] = []
        if job_filter.status is not None:
            clauses.append("status = ?")
            params.append(job_filter.status.value)
        if job_filter.name is not None:
            clauses.append("name = ?")
            params.append(job_filter.name)
        query = "SELECT data FROM jobs"
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY updated_at"
        rows = await asyncio.to_thread(self._fetchall, query, *params)
        return [JobRecord.model_validate_json(r["data"]) for r in rows]

    async def load_task(self, task_id: str) -> Task | None:
        row = await asyncio.to_thread(
            self._fetchone, "SELECT data FROM tasks WHERE id = ?", task_id
        )
        if not row:
            return None
        return Task.model_validate_json(row["data"])

    async def save_task(self, task: Task) -> None:
        await asyncio.to_thread(
            self._execute,
            """
            INSERT OR REPLACE INTO tasks (id, job_id, status, data, created_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            task.id,
            task.job_id,
            task.status.value,
            task.model_dump_json(),
            task.created_at.isoformat(),
        )

    async def list_tasks(self) -> list[Task]:
        rows = await asyncio.to_thread(
            self._fetchall, "SELECT data FROM tasks ORDER BY created_at"
        )
        return [Task.model_validate_json(r["data"]) for r in rows]
