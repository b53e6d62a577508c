"""Segmentation of source documents into chunks and batch units."""

from __future__ import annotations

from typing import Any, List, Optional

from .contracts import Chunk, ChunkMetadata, JobRecord


def create_chunks(text: str, chunk_size: int = 3000, overlap: int = 0) -> List[Chunk]:
    """Pack lines into chunks of at most ``chunk_size`` characters.

    A single line longer than ``chunk_size`` becomes its own chunk. Each new
    chunk repeats the last ``overlap // 100`` lines of the previous one.
    """
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")

    lines = text.split("\n")
    overlap_lines = max(overlap, 0) // 100
    groups: List[List[str]] = []
    current: List[str] = []
    size = 0

    for line in lines:
        added = len(line) + (1 if current else 0)
        if current and size + added > chunk_size:
            groups.append(current)
            current = current[-overlap_lines:] if 0 < overlap_lines < len(current) else []
            size = len("\n".join(current))
            added = len(line) + (1 if current else 0)
        current.append(line)
        size += added

    if current and "\n".join(current).strip():
        groups.append(current)

    total = len(groups)
    return [
        Chunk(
            id=f"chunk_{index}",
            index=index,
            text="\n".join(group),
            metadata=ChunkMetadata(chunk_index=index, total_chunks=total),
        )
        for index, group in enumerate(groups)
    ]


def split_units(text: str, size: int) -> List[str]:
    """Fixed-size character slices of ``text``."""
    if size <= 0:
        raise ValueError("size must be positive")
    return [text[start : start + size] for start in range(0, len(text), size)]


def build_job(
    name: str,
    text: str,
    chunk_size: int = 3000,
    overlap: int = 0,
    language: str = "en",
    glossary: Optional[Any] = None,
    **options: Any,
) -> JobRecord:
    """Create a job record with its chunks already segmented."""
    return JobRecord(
        name=name,
        source_text=text,
        chunks=create_chunks(text, chunk_size, overlap),
        chunk_size=chunk_size,
        overlap=overlap,
        language=language,
        glossary=glossary,
        **options,
    )
