"""Background task supervisor.

The supervisor creates tasks, runs their bodies, cancels them cooperatively
and, in :meth:`TaskSupervisor.startup`, returns tasks left running by a
previous process to ``pending``. It is the single place where an exception
escaping a job body becomes a ``failed`` task.

Each run gets a fresh ``run_id`` stored in the task metadata. A run whose
id is no longer the task's current one has been superseded and exits
without writing anything further.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Mapping, Optional, assert_never

from . import jobs
from .config import ChunkflowConfig, LLMConfig
from .context import RunContext
from .contracts import Task, TaskKind, TaskStatus, new_id
from .errors import ChunkNotFoundError, StaleRunError, TaskCancelled, TaskNotFoundError
from .llm import TextGenerator, build_generators
from .store import TaskStore

logger = logging.getLogger(__name__)

GeneratorFactory = Callable[[Mapping[str, LLMConfig]], Mapping[str, TextGenerator]]

INTERRUPTED_MESSAGE = "Task was interrupted. Please restart if needed."


class TaskSupervisor:
    """Creates, runs and cancels tasks held in a :class:`TaskStore`."""

    def __init__(
        self,
        store: TaskStore,
        config: Optional[ChunkflowConfig] = None,
        generators: Optional[Mapping[str, TextGenerator]] = None,
        generator_factory: GeneratorFactory = build_generators,
    ) -> None:
        self.store = store
        self.config = config or ChunkflowConfig()
        self._generators = generators
        self._generator_factory = generator_factory
        self._active: Dict[str, RunContext] = {}
        self._futures: Dict[str, asyncio.Task] = {}

    async def create(
        self,
        kind: TaskKind,
        job_id: str,
        chunk_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> str:
        """Register a pending task and return its id."""
        kind = TaskKind(kind)
        if kind.requires_chunk and not chunk_id:
            raise ValueError(f"Task kind '{kind.value}' requires a target chunk")
        record = await self.store.get_job(job_id)
        if chunk_id and record.get_chunk(chunk_id) is None:
            raise ChunkNotFoundError(job_id, chunk_id)
        task = await self.store.create_task(kind, job_id, chunk_id, metadata)
        return task.id

    def is_running(self, task_id: str) -> bool:
        return task_id in self._active

    async def startup(self) -> list[str]:
        """Load the registry and recover tasks a previous process left running.

        Call once when the process starts, before running anything.
        """
        await self.store.load()
        return await self.recover_interrupted()

    def start(self, task_id: str, takeover: bool = False) -> asyncio.Task:
        """Schedule ``run(task_id)`` in the background.

        The returned future is kept by the supervisor until it finishes.
        """
        future = asyncio.create_task(
            self.run(task_id, takeover=takeover), name=f"chunkflow-{task_id}"
        )
        self._futures[task_id] = future
        future.add_done_callback(lambda _: self._futures.pop(task_id, None))
        return future

    async def wait(self) -> None:
        """Wait for every task started with :meth:`start`."""
        while self._futures:
            await asyncio.gather(*list(self._futures.values()))

    async def run(self, task_id: str, takeover: bool = False) -> None:
        """Run the task body once. Never raises.

        A task already ``running`` under another run is left alone unless
        ``takeover`` is set; the new run then supersedes the old one.
        """
        if task_id in self._active:
            logger.warning(f"Task {task_id} is already running; ignoring run request")
            return
        task = self.store.get_task(task_id)
        if task is None:
            logger.warning(f"Task {task_id} not found; nothing to run")
            return
        if task.is_terminal:
            logger.warning(
                f"Task {task_id} is already {task.status.value}; create a new task to retry"
            )
            return
        if task.status == TaskStatus.RUNNING and not takeover:
            logger.warning(
                f"Task {task_id} is running as {task.run_id}; pass takeover=True to supersede it"
            )
            return

        run_id = new_id("run")
        context = RunContext(self.store, task, run_id, {}, self.config)
        self._active[task_id] = context
        try:
            context.generators = await self._generators_for(task)
            context.task = await self.store.update_task(
                task_id,
                status=TaskStatus.RUNNING,
                progress=0.0,
                message="Starting",
                error=None,
                metadata={
                    "run_id": run_id,
                    "run_seq": task.metadata.get("run_seq", 0) + 1,
                    "started_at": datetime.now(timezone.utc).isoformat(),
                },
            )
            logger.info(f"Running task {task_id} ({task.kind.value}) as {run_id}")
            outcome = await self._dispatch(context.task, context)
        except StaleRunError:
            logger.info(f"Run {run_id} of task {task_id} was superseded; stopping quietly")
        except TaskCancelled:
            await self._finish(task_id, run_id, TaskStatus.CANCELLED, "Task cancelled")
        except Exception as exc:
            if context.cancelled:
                await self._finish(task_id, run_id, TaskStatus.CANCELLED, "Task cancelled")
            else:
                logger.error(f"Task {task_id} failed: {exc}")
                await self._finish(
                    task_id, run_id, TaskStatus.FAILED, "Task failed", error=str(exc)
                )
        else:
            await self._finish(
                task_id, run_id, TaskStatus.COMPLETED, outcome or "Task completed"
            )
        finally:
            if self._active.get(task_id) is context:
                self._active.pop(task_id, None)

    async def cancel(self, task_id: str) -> Task:
        """Signal cancellation and mark the task cancelled."""
        context = self._active.get(task_id)
        if context is not None:
            context.cancel()
        task = self.store.get_task(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        if task.is_terminal:
            logger.info(f"Task {task_id} already {task.status.value}; nothing to cancel")
            return task
        return await self.store.update_task(
            task_id, status=TaskStatus.CANCELLED, message="Task cancelled"
        )

    async def recover_interrupted(self) -> list[str]:
        """Return tasks left ``running`` by a previous process to ``pending``."""
        recovered = []
        for task in self.store.list_tasks():
            if task.status != TaskStatus.RUNNING or task.id in self._active:
                continue
            await self.store.update_task(
                task.id, status=TaskStatus.PENDING, message=INTERRUPTED_MESSAGE
            )
            recovered.append(task.id)
        if recovered:
            logger.warning(f"Recovered {len(recovered)} interrupted task(s)")
        return recovered

    async def _generators_for(self, task: Task) -> Mapping[str, TextGenerator]:
        if self._generators is not None:
            return self._generators
        record = await self.store.find_job(task.job_id)
        stages = {**self.config.stages, **(record.stages if record else {})}
        return self._generator_factory(stages)

    async def _dispatch(self, task: Task, context: RunContext) -> Optional[str]:
        """Run the body for the task kind; returns an optional final message."""
        match task.kind:
            case TaskKind.TRANSLATE_ALL:
                return await jobs.translate_all(context)
            case TaskKind.TRANSLATE_CHUNK:
                return await jobs.translate_chunk(context)
            case TaskKind.RETRANSLATE_CHUNK:
                return await jobs.retranslate_chunk(context)
            case TaskKind.MATCH_PARAGRAPHS:
                return await jobs.match_paragraphs(context)
            case TaskKind.REVIEW_CHUNK:
                return await jobs.review_chunk(context)
            case TaskKind.EXTRACT_GLOSSARY:
                return await jobs.extract_glossary(context)
            case TaskKind.PUBLISH:
                return await jobs.publish(context)
            case TaskKind.PUBLISH_CHUNK:
                return await jobs.publish_chunk(context)
            case _:
                assert_never(task.kind)

    async def _finish(
        self,
        task_id: str,
        run_id: str,
        status: TaskStatus,
        message: str,
        error: Optional[str] = None,
    ) -> None:
        changes: Dict[str, Any] = {"status": status, "message": message}
        if status == TaskStatus.COMPLETED:
            changes["progress"] = 1.0
        if error is not None:
            changes["error"] = error
        try:
            await self.store.update_task(task_id, expected_run_id=run_id, **changes)
        except StaleRunError:
            logger.info(f"Run {run_id} of task {task_id} was superseded before finishing")
        except Exception:
            logger.exception(f"Could not record final status of task {task_id}")
