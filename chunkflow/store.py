"""Task registry and job record store.

``TaskStore`` is the only mutation surface for tasks and job records. Every
update method performs a read-merge-write under one ``asyncio.Lock`` so two
updates never interleave, and the result is written through the configured
repository before observers are notified.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from .constants import MAX_RUNNING_PROGRESS
from .contracts import (
    Checkpoint,
    Chunk,
    ChunkResults,
    JobFilter,
    JobRecord,
    Task,
    TaskKind,
    TaskStatus,
)
from .errors import (
    ChunkNotFoundError,
    ImmutableFieldError,
    JobNotFoundError,
    StaleRunError,
    TaskCancelled,
    TaskNotFoundError,
)
from .persistence import JobRepository

logger = logging.getLogger(__name__)

TaskListener = Callable[[Dict[str, Task]], None]


class TaskStore:
    """Readable, subscribable registry of tasks backed by a repository."""

    def __init__(self, repository: JobRepository) -> None:
        self._repository = repository
        self._tasks: Dict[str, Task] = {}
        self._listeners: List[TaskListener] = []
        self._lock = asyncio.Lock()

    @property
    def repository(self) -> JobRepository:
        return self._repository

    async def load(self) -> None:
        """Populate the registry from persisted tasks."""
        tasks = await self._repository.list_tasks()
        self._tasks = {task.id: task for task in tasks}
        logger.debug(f"Loaded {len(tasks)} tasks from repository")
        self._notify()

    # ------------------------------------------------------------------
    # Observers
    def subscribe(self, listener: TaskListener) -> Callable[[], None]:
        """Register ``listener`` for "all tasks changed" notifications."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Task listener raised; continuing with other listeners")

    def snapshot(self) -> Dict[str, Task]:
        return {task_id: task.model_copy(deep=True) for task_id, task in self._tasks.items()}

    # ------------------------------------------------------------------
    # Tasks
    def get_task(self, task_id: str) -> Optional[Task]:
        task = self._tasks.get(task_id)
        return task.model_copy(deep=True) if task else None

    def list_tasks(self, job_id: Optional[str] = None) -> List[Task]:
        tasks = sorted(self._tasks.values(), key=lambda t: t.created_at)
        return [
            t.model_copy(deep=True) for t in tasks if job_id is None or t.job_id == job_id
        ]

    async def create_task(
        self,
        kind: TaskKind,
        job_id: str,
        chunk_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Task:
        task = Task(
            kind=kind,
            job_id=job_id,
            chunk_id=chunk_id,
            metadata=dict(metadata or {}),
            message="Waiting to start",
        )
        async with self._lock:
            await self._repository.save_task(task)
            self._tasks[task.id] = task
        logger.info(f"Created task {task.id} ({task.kind.value}) for job {job_id}")
        self._notify()
        return task.model_copy(deep=True)

    async def update_task(
        self, task_id: str, expected_run_id: Optional[str] = None, **changes: Any
    ) -> Task:
        """Merge ``changes`` into the task.

        ``metadata`` is merged key by key. Status changes out of a terminal
        state are refused. While a task stays in the same run, progress never
        moves backwards and only completion reports 1.0.

        When ``expected_run_id`` is given the write only happens if it is
        still the task's current run and the task was not returned to
        ``pending``; otherwise ``StaleRunError`` is raised.
        """
        async with self._lock:
            task = self._tasks.get(task_id)
            if task is None:
                raise TaskNotFoundError(task_id)

            if expected_run_id is not None and (
                task.run_id != expected_run_id or task.status == TaskStatus.PENDING
            ):
                raise StaleRunError(task_id, expected_run_id)

            if task.is_terminal:
                logger.debug(
                    f"Ignoring update to task {task_id} in terminal state {task.status.value}"
                )
                return task.model_copy(deep=True)

            data = task.model_dump()
            if "metadata" in changes:
                data["metadata"] = {**task.metadata, **(changes.pop("metadata") or {})}
            data.update(changes)
            data["updated_at"] = datetime.now(timezone.utc)
            updated = Task.model_validate(data)

            same_run = updated.run_id == task.run_id
            if updated.status == TaskStatus.COMPLETED:
                updated.progress = 1.0
            elif updated.status == TaskStatus.RUNNING:
                progress = min(updated.progress, MAX_RUNNING_PROGRESS)
                if task.status == TaskStatus.RUNNING and same_run:
                    progress = max(progress, task.progress)
                updated.progress = progress

            await self._repository.save_task(updated)
            self._tasks[task_id] = updated
            if updated.status != task.status:
                logger.info(f"Task {task_id} status → {updated.status.value}")

        self._notify()
        return updated.model_copy(deep=True)

    # ------------------------------------------------------------------
    # Jobs
    async def create_job(self, record: JobRecord) -> JobRecord:
        async with self._lock:
            await self._repository.save_job(record)
        logger.info(f"Created job {record.id} with {len(record.chunks)} chunks")
        return record

    async def find_job(self, job_id: str) -> Optional[JobRecord]:
        return await self._repository.load_job(job_id)

    async def get_job(self, job_id: str) -> JobRecord:
        record = await self._repository.load_job(job_id)
        if record is None:
            raise JobNotFoundError(job_id)
        return record

    async def list_jobs(self, job_filter: Optional[JobFilter] = None) -> List[JobRecord]:
        return await self._repository.list_jobs(job_filter)

    async def delete_job(self, job_id: str) -> None:
        """Delete a job record; refused while one of its tasks is running."""
        async with self._lock:
            busy = [
                t.id
                for t in self._tasks.values()
                if t.job_id == job_id and t.status == TaskStatus.RUNNING
            ]
            if busy:
                raise ValueError(f"Job {job_id} has running tasks: {', '.join(busy)}")
            if await self._repository.load_job(job_id) is None:
                raise JobNotFoundError(job_id)
            await self._repository.delete_job(job_id)
        logger.info(f"Deleted job {job_id}")

    async def update_job(
        self,
        job_id: str,
        *,
        task_id: Optional[str] = None,
        expected_run_id: Optional[str] = None,
        **changes: Any,
    ) -> JobRecord:
        """Merge ``changes`` into a job record.

        With ``task_id`` and ``expected_run_id`` the write only happens while
        that run still owns the task, checked under the same lock as the write.
        """
        async with self._lock:
            self._ensure_current_run(task_id, expected_run_id)
            record = await self.get_job(job_id)
            data = record.model_dump()
            data.update(changes)
            data["updated_at"] = datetime.now(timezone.utc)
            updated = JobRecord.model_validate(data)
            await self._repository.save_job(updated)
        return updated

    async def save_checkpoint(
        self,
        job_id: str,
        checkpoint: Checkpoint,
        *,
        task_id: Optional[str] = None,
        expected_run_id: Optional[str] = None,
    ) -> JobRecord:
        return await self.update_job(
            job_id, task_id=task_id, expected_run_id=expected_run_id, checkpoint=checkpoint
        )

    async def update_chunk(
        self,
        job_id: str,
        chunk_id: str,
        *,
        task_id: Optional[str] = None,
        expected_run_id: Optional[str] = None,
        **changes: Any,
    ) -> Chunk:
        """Merge ``changes`` into one chunk of a job.

        A ``results`` dict is merged into the existing results; a
        ``ChunkResults`` instance replaces them. The chunk's source text is
        immutable. The run guard works as in :meth:`update_job`.
        """
        async with self._lock:
            self._ensure_current_run(task_id, expected_run_id)
            record = await self.get_job(job_id)
            position = next(
                (i for i, c in enumerate(record.chunks) if c.id == chunk_id), None
            )
            if position is None:
                raise ChunkNotFoundError(job_id, chunk_id)
            chunk = record.chunks[position]

            if "text" in changes:
                if changes["text"] != chunk.text:
                    raise ImmutableFieldError(
                        f"Source text of chunk {chunk_id} cannot be modified"
                    )
                changes.pop("text")

            data = chunk.model_dump()
            results = changes.pop("results", None)
            if isinstance(results, ChunkResults):
                data["results"] = results.model_dump()
            elif results is not None:
                data["results"] = {**data["results"], **results}
            data.update(changes)
            updated = Chunk.model_validate(data)

            record.chunks[position] = updated
            record.updated_at = datetime.now(timezone.utc)
            await self._repository.save_job(record)
        return updated

    def _ensure_current_run(self, task_id: Optional[str], run_id: Optional[str]) -> None:
        # Caller holds the lock.
        if run_id is None:
            return
        task = self._tasks.get(task_id or "")
        if task is None or task.run_id != run_id:
            raise StaleRunError(task_id or "", run_id)
        if task.status == TaskStatus.CANCELLED:
            raise TaskCancelled(f"Task {task_id} was cancelled")
        if task.status != TaskStatus.RUNNING:
            raise StaleRunError(task_id or "", run_id)
