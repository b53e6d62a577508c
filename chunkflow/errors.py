"""Exception types raised by chunkflow."""

from __future__ import annotations


class ChunkflowError(Exception):
    """Base class for all chunkflow errors."""


class GraphConfigurationError(ChunkflowError):
    """A workflow graph was wired incorrectly."""


class TaskNotFoundError(ChunkflowError):
    def __init__(self, task_id: str) -> None:
        super().__init__(f"Task {task_id} not found")
        self.task_id = task_id


class JobNotFoundError(ChunkflowError):
    def __init__(self, job_id: str) -> None:
        super().__init__(f"Job {job_id} not found")
        self.job_id = job_id


class ChunkNotFoundError(ChunkflowError):
    def __init__(self, job_id: str, chunk_id: str) -> None:
        super().__init__(f"Chunk {chunk_id} not found in job {job_id}")
        self.job_id = job_id
        self.chunk_id = chunk_id


class ImmutableFieldError(ChunkflowError):
    """Raised when a caller tries to overwrite a chunk's source text."""


class PipelineError(ChunkflowError):
    """A required pipeline stage failed."""

    def __init__(self, message: str, stage: str | None = None) -> None:
        super().__init__(message)
        self.stage = stage


class StageOutputError(ChunkflowError):
    """Structured model output could not be parsed."""


class RunInterrupted(ChunkflowError):
    """A running job body must stop without writing further results."""


class TaskCancelled(RunInterrupted):
    """Cooperative cancellation was observed by a job body."""


class StaleRunError(RunInterrupted):
    """The run is no longer the authoritative run of its task."""

    def __init__(self, task_id: str, run_id: str) -> None:
        super().__init__(f"Run {run_id} of task {task_id} was superseded")
        self.task_id = task_id
        self.run_id = run_id
