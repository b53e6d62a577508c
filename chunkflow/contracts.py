"""Core data contracts for chunkflow jobs and tasks."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from .config import LLMConfig


def _now() -> datetime:
    return datetime.now(timezone.utc)


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex}"


class TaskStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELLED}
)


class TaskKind(str, Enum):
    """Kinds of background work the supervisor knows how to run."""

    TRANSLATE_ALL = "translate_all"
    TRANSLATE_CHUNK = "translate_chunk"
    RETRANSLATE_CHUNK = "retranslate_chunk"
    MATCH_PARAGRAPHS = "match_paragraphs"
    REVIEW_CHUNK = "review_chunk"
    EXTRACT_GLOSSARY = "extract_glossary"
    PUBLISH = "publish"
    PUBLISH_CHUNK = "publish_chunk"

    @property
    def requires_chunk(self) -> bool:
        return self in (
            TaskKind.TRANSLATE_CHUNK,
            TaskKind.RETRANSLATE_CHUNK,
            TaskKind.MATCH_PARAGRAPHS,
            TaskKind.REVIEW_CHUNK,
            TaskKind.PUBLISH_CHUNK,
        )


class Task(BaseModel):
    """One schedulable, cancelable unit of background work."""

    id: str = Field(default_factory=lambda: new_id("task"))
    kind: TaskKind
    status: TaskStatus = TaskStatus.PENDING
    progress: float = 0.0
    message: str = ""
    job_id: str
    chunk_id: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    error: Optional[str] = None
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)

    @property
    def run_id(self) -> Optional[str]:
        return self.metadata.get("run_id")

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal


class ChunkStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class ChunkMetadata(BaseModel):
    chunk_index: int
    total_chunks: int = 0
    custom_instruction: Optional[str] = None


class UnmatchedSegment(BaseModel):
    """Source text with no counterpart in the target paragraphs."""

    text: str
    before_target_index: int


class ParagraphMatchResult(BaseModel):
    """Source paragraphs aligned one-to-one with the target layout."""

    target_paragraphs: List[str]
    source_paragraphs: List[str]
    unmatched_source: List[UnmatchedSegment] = Field(default_factory=list)


class ReviewIssue(BaseModel):
    category: str
    severity: Literal["high", "medium", "low"]
    message: str
    subcategory: Optional[str] = None
    text: Optional[str] = None
    suggestion: Optional[str] = None
    start: Optional[int] = None
    end: Optional[int] = None


class ChunkResults(BaseModel):
    """Derived artifacts written back for a chunk."""

    translated: Optional[str] = None
    enhanced: Optional[str] = None
    proofread: Optional[str] = None
    final: Optional[str] = None
    quality_score: Optional[float] = None
    quality_issues: List[str] = Field(default_factory=list)
    retry_count: int = 0
    paragraph_matches: Optional[ParagraphMatchResult] = None
    review_issues: Optional[List[ReviewIssue]] = None

    def best_text(self) -> str:
        """Most refined stage output available, or an empty string."""
        return self.final or self.proofread or self.enhanced or self.translated or ""


class Chunk(BaseModel):
    """Ordered sub-unit of a job's source content."""

    id: str
    index: int
    text: str
    metadata: ChunkMetadata
    status: ChunkStatus = ChunkStatus.PENDING
    results: ChunkResults = Field(default_factory=ChunkResults)
    error: Optional[str] = None

    def best_text(self) -> str:
        return self.results.best_text()


class JobStatus(str, Enum):
    SETUP = "setup"
    GLOSSARY_RUNNING = "glossary_running"
    GLOSSARY_COMPLETED = "glossary_completed"
    TRANSLATING = "translating"
    TRANSLATION_COMPLETED = "translation_completed"


class Checkpoint(BaseModel):
    """Progress marker for a resumable batch."""

    processed_count: int = 0
    total_units: int = 0
    partials: List[Optional[Dict[str, Any]]] = Field(default_factory=list)
    artifact: Optional[Dict[str, Any]] = None

    @property
    def is_complete(self) -> bool:
        return self.total_units > 0 and self.processed_count >= self.total_units


class JobRecord(BaseModel):
    """User-facing unit of work and the chunks it owns."""

    id: str = Field(default_factory=lambda: new_id("job"))
    name: str
    status: JobStatus = JobStatus.SETUP
    source_text: str = ""
    language: Literal["en", "ja"] = "en"
    chunks: List[Chunk] = Field(default_factory=list)
    chunk_size: int = 3000
    overlap: int = 0
    translation_progress: float = 0.0
    max_retries: Optional[int] = None
    enable_proofreader: bool = True
    stages: Dict[str, LLMConfig] = Field(default_factory=dict)
    prompts: Dict[str, str] = Field(default_factory=dict)
    glossary: Optional[Any] = None
    checkpoint: Optional[Checkpoint] = None
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)

    def get_chunk(self, chunk_id: str) -> Optional[Chunk]:
        return next((c for c in self.chunks if c.id == chunk_id), None)

    def chunk_at(self, index: int) -> Optional[Chunk]:
        return next((c for c in self.chunks if c.index == index), None)


class JobFilter(BaseModel):
    """Criteria for ``list_jobs``; unset fields match everything."""

    status: Optional[JobStatus] = None
    name: Optional[str] = None

    def matches(self, record: JobRecord) -> bool:
        if self.status is not None and record.status != self.status:
            return False
        if self.name is not None and record.name != self.name:
            return False
        return True
