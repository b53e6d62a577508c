"""Per-run handle passed from the supervisor down to job bodies."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Mapping, Optional, TypeVar

from .config import ChunkflowConfig
from .contracts import Checkpoint, Chunk, JobRecord, Task, TaskStatus
from .errors import StaleRunError, TaskCancelled
from .llm import TextGenerator
from .store import TaskStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RunContext:
    """Cancellation token and authority check for one run of a task.

    Job bodies call :meth:`check` before and after every externally visible
    unit of work. It raises ``TaskCancelled`` once the run was cancelled and
    ``StaleRunError`` once another run took over the task. Job and chunk
    writes go through :meth:`update_job`, :meth:`update_chunk` and
    :meth:`save_checkpoint`, which repeat that check inside the store lock.
    """

    def __init__(
        self,
        store: TaskStore,
        task: Task,
        run_id: str,
        generators: Mapping[str, TextGenerator],
        config: ChunkflowConfig,
    ) -> None:
        self.store = store
        self.task = task
        self.run_id = run_id
        self.generators = generators
        self.config = config
        self._cancelled = asyncio.Event()

    @property
    def task_id(self) -> str:
        return self.task.id

    @property
    def job_id(self) -> str:
        return self.task.job_id

    @property
    def chunk_id(self) -> Optional[str]:
        return self.task.chunk_id

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self) -> None:
        self._cancelled.set()

    def check(self) -> None:
        if self._cancelled.is_set():
            raise TaskCancelled(f"Task {self.task_id} was cancelled")
        current = self.store.get_task(self.task_id)
        if current is None:
            raise StaleRunError(self.task_id, self.run_id)
        if current.status == TaskStatus.CANCELLED:
            raise TaskCancelled(f"Task {self.task_id} was cancelled")
        if current.run_id != self.run_id or current.status != TaskStatus.RUNNING:
            raise StaleRunError(self.task_id, self.run_id)

    async def call(self, fn: Callable[[], Awaitable[T]]) -> T:
        """Await ``fn`` between two authority checks."""
        self.check()
        result = await fn()
        self.check()
        return result

    async def report(self, progress: float, message: Optional[str] = None) -> None:
        """Publish progress for this run."""
        self.check()
        changes = {"status": TaskStatus.RUNNING, "progress": progress}
        if message is not None:
            changes["message"] = message
        await self.store.update_task(self.task_id, expected_run_id=self.run_id, **changes)

    async def remember(self, **metadata) -> None:
        """Merge values into the task metadata for later runs."""
        self.check()
        await self.store.update_task(
            self.task_id, expected_run_id=self.run_id, metadata=metadata
        )
        self.task.metadata.update(metadata)

    async def update_job(self, **changes: Any) -> JobRecord:
        """Write to the job record while this run still owns the task."""
        self.check()
        return await self.store.update_job(
            self.job_id, task_id=self.task_id, expected_run_id=self.run_id, **changes
        )

    async def update_chunk(self, chunk_id: str, **changes: Any) -> Chunk:
        self.check()
        return await self.store.update_chunk(
            self.job_id,
            chunk_id,
            task_id=self.task_id,
            expected_run_id=self.run_id,
            **changes,
        )

    async def save_checkpoint(self, checkpoint: Checkpoint) -> JobRecord:
        self.check()
        return await self.store.save_checkpoint(
            self.job_id, checkpoint, task_id=self.task_id, expected_run_id=self.run_id
        )
