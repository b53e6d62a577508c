"""chunkflow: LLM-driven multi-stage processing of long documents in chunks."""

from .batch import ResumableBatchRunner
from .config import ChunkflowConfig, LLMConfig, load_config
from .contracts import Checkpoint, Chunk, JobRecord, Task, TaskKind, TaskStatus
from .graph import END, START, WorkflowGraph
from .persistence import get_repository
from .pipeline import ChunkPipeline
from .store import TaskStore
from .supervisor import TaskSupervisor

__version__ = "0.1.0"
__all__ = [
    "END",
    "START",
    "Checkpoint",
    "Chunk",
    "ChunkPipeline",
    "ChunkflowConfig",
    "JobRecord",
    "LLMConfig",
    "ResumableBatchRunner",
    "Task",
    "TaskKind",
    "TaskStatus",
    "TaskStore",
    "TaskSupervisor",
    "WorkflowGraph",
    "get_repository",
    "load_config",
]
