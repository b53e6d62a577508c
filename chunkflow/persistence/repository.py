"""Repository abstraction for job and task persistence."""

from __future__ import annotations

from typing import Protocol

from ..contracts import JobFilter, JobRecord, Task


class JobRepository(Protocol):
    """Protocol for job and task persistence backends."""

    async def load_job(self, job_id: str) -> JobRecord | None:
        """Return the job record or ``None`` when unknown."""

    async def save_job(self, record: JobRecord) -> None:
        """Insert or replace a job record."""

    async def delete_job(self, job_id: str) -> None:
        """Remove a job record; unknown ids are ignored."""

    async def list_jobs(self, job_filter: JobFilter | None = None) -> list[JobRecord]:
        """Return job records matching ``job_filter``."""

    async def load_task(self, task_id: str) -> Task | None:
        """Return the task or ``None`` when unknown."""

    async def save_task(self, task: Task) -> None:
        """Insert or replace a task."""

    async def list_tasks(self) -> list[Task]:
        """Return all persisted tasks."""
