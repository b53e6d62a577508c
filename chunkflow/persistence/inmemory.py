"""In-memory implementation of the job repository."""

from __future__ import annotations

from typing import Dict

from ..contracts import JobFilter, JobRecord, Task
from .repository import JobRepository


class InMemoryJobRepository(JobRepository):
    """Store jobs and tasks in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts. Records are copied on the way in and
    out so callers never share mutable state with the repository.
    """

    def __init__(self) -> None:
        self._jobs: Dict[str, JobRecord] = {}
        self._tasks: Dict[str, Task] = {}

    # ------------------------------------------------------------------
    async def load_job(self, job_id: str) -> JobRecord | None:
        record = self._jobs.get(job_id)
        return record.model_copy(deep=True) if record else None

    async def save_job(self, record: JobRecord) -> None:
        self._jobs[record.id] = record.model_copy(deep=True)

    async def delete_job(self, job_id: str) -> None:
        self._jobs.pop(job_id, None)

    async def list_jobs(self, job_filter: JobFilter | None = None) -> list[JobRecord]:
        job_filter = job_filter or JobFilter()
        return [
            record.model_copy(deep=True)
            for record in self._jobs.values()
            if job_filter.matches(record)
        ]

    async def load_task(self, task_id: str) -> Task | None:
        task = self._tasks.get(task_id)
        return task.model_copy(deep=True) if task else None

    async def save_task(self, task: Task) -> None:
        self._tasks[task.id] = task.model_copy(deep=True)

    async def list_tasks(self) -> list[Task]:
        return [task.model_copy(deep=True) for task in self._tasks.values()]
