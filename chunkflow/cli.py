"""Command line interface for chunkflow jobs and tasks."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Optional

import typer
import yaml

from chunkflow import TaskStore, TaskSupervisor, get_repository, load_config
from chunkflow.chunking import build_job
from chunkflow.contracts import TaskKind
from chunkflow.errors import ChunkflowError

app = typer.Typer(help="CLI for chunkflow pipelines")

# Command groups
job_app = typer.Typer(help="Commands for managing jobs")
task_app = typer.Typer(help="Commands for managing background tasks")

app.add_typer(job_app, name="job")
app.add_typer(task_app, name="task")


@app.callback()
def main() -> None:
    """chunkflow CLI entry point."""
    config = load_config()
    logging.basicConfig(
        level=config.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


async def _open_store() -> TaskStore:
    store = TaskStore(get_repository())
    await store.load()
    return store


async def _open_supervisor() -> tuple[TaskSupervisor, list[str]]:
    """Start a supervisor for this process; returns it with the recovered task ids."""
    supervisor = TaskSupervisor(TaskStore(get_repository()), load_config())
    recovered = await supervisor.startup()
    return supervisor, recovered


def _fail(message: str) -> None:
    typer.secho(message, fg=typer.colors.RED)
    raise typer.Exit(code=1)


def _read_glossary(path: Path):
    text = path.read_text(encoding="utf-8")
    if path.suffix in (".yaml", ".yml"):
        return yaml.safe_load(text)
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return text


@job_app.command("create")
def job_create(
    source: Path,
    name: str = typer.Option(..., help="Display name of the job"),
    chunk_size: int = typer.Option(3000, help="Maximum characters per chunk"),
    overlap: int = typer.Option(0, help="Overlap; every 100 adds one repeated line"),
    language: str = typer.Option("en", help="Target language (en or ja)"),
    glossary: Optional[Path] = typer.Option(None, help="Glossary file (JSON, YAML or text)"),
) -> None:
    """
    Create a job from a source text file.

    The text is split into chunks right away; nothing is translated until a
    task is created and run.

    Example:
        chunkflow job create novel.txt --name "Chapter 1" --chunk-size 2000
    """
    if not source.exists():
        _fail("Source file does not exist")
    if language not in ("en", "ja"):
        _fail("Language must be 'en' or 'ja'")

    record = build_job(
        name,
        source.read_text(encoding="utf-8"),
        chunk_size=chunk_size,
        overlap=overlap,
        language=language,
        glossary=_read_glossary(glossary) if glossary else None,
    )

    async def _create():
        store = await _open_store()
        return await store.create_job(record)

    created = asyncio.run(_create())
    typer.echo(f"{created.id}\t{len(created.chunks)} chunks")


@job_app.command("list")
def job_list() -> None:
    """List all jobs with their status and translation progress."""
    repo = get_repository()
    records = asyncio.run(repo.list_jobs())
    if not records:
        typer.echo("No jobs found")
        return
    for record in records:
        typer.echo(
            f"{record.id}\t{record.name}\t{record.status.value}\t"
            f"{record.translation_progress:.0%}"
        )


@job_app.command("show")
def job_show(job_id: str) -> None:
    """
    Show a job and the state of each of its chunks.

    Example:
        chunkflow job show job_1234
        # Output: Job job_1234 (Chapter 1): translating
        #         - chunk_0: completed (score 85)
        #         - chunk_1: failed: Translation failed
    """
    repo = get_repository()
    record = asyncio.run(repo.load_job(job_id))
    if record is None:
        _fail("Job not found")
    typer.echo(f"Job {record.id} ({record.name}): {record.status.value}")
    typer.echo(f"Progress: {record.translation_progress:.0%}")
    checkpoint = record.checkpoint
    if checkpoint is not None:
        state = "complete" if checkpoint.is_complete else "in progress"
        typer.echo(
            f"Glossary: {checkpoint.processed_count}/{checkpoint.total_units} segments ({state})"
        )
    for chunk in record.chunks:
        line = f"- {chunk.id}: {chunk.status.value}"
        if chunk.results.quality_score is not None:
            line += f" (score {chunk.results.quality_score:g})"
        if chunk.error:
            line += f": {chunk.error}"
        typer.echo(line)


@job_app.command("delete")
def job_delete(job_id: str) -> None:
    """Delete a job and its chunks."""

    async def _delete():
        supervisor, _ = await _open_supervisor()
        await supervisor.store.delete_job(job_id)

    try:
        asyncio.run(_delete())
    except (ChunkflowError, ValueError) as exc:
        _fail(str(exc))
    typer.echo(f"Deleted {job_id}")


@task_app.command("create")
def task_create(
    kind: TaskKind,
    job_id: str,
    chunk: Optional[str] = typer.Option(None, help="Target chunk id"),
    prompt: Optional[str] = typer.Option(None, help="Custom prompt for publish tasks"),
) -> None:
    """Create a pending task for a job."""
    metadata = {"prompt": prompt} if prompt else None

    async def _create():
        supervisor, _ = await _open_supervisor()
        return await supervisor.create(kind, job_id, chunk, metadata)

    try:
        task_id = asyncio.run(_create())
    except (ChunkflowError, ValueError) as exc:
        _fail(str(exc))
    typer.echo(task_id)


@task_app.command("run")
def task_run(task_id: str) -> None:
    """
    Run a task in the foreground until it finishes.

    Example:
        chunkflow task run task_1234
        # Output: task_1234    completed    Task completed
    """

    async def _run():
        supervisor, _ = await _open_supervisor()
        await supervisor.run(task_id)
        return supervisor.store.get_task(task_id)

    task = asyncio.run(_run())
    if task is None:
        _fail("Task not found")
    typer.echo(f"{task.id}\t{task.status.value}\t{task.message}")
    if task.error:
        typer.echo(f"Error: {task.error}")
        raise typer.Exit(code=1)


@task_app.command("list")
def task_list(job_id: Optional[str] = typer.Option(None, help="Only tasks of this job")) -> None:
    """List tasks with status and progress."""

    async def _list():
        supervisor, _ = await _open_supervisor()
        return supervisor.store.list_tasks(job_id)

    tasks = asyncio.run(_list())
    if not tasks:
        typer.echo("No tasks found")
        return
    for task in tasks:
        typer.echo(
            f"{task.id}\t{task.kind.value}\t{task.status.value}\t"
            f"{task.progress:.0%}\t{task.message}"
        )


@task_app.command("cancel")
def task_cancel(task_id: str) -> None:
    """Mark a task cancelled."""

    async def _cancel():
        supervisor, _ = await _open_supervisor()
        return await supervisor.cancel(task_id)

    try:
        task = asyncio.run(_cancel())
    except ChunkflowError as exc:
        _fail(str(exc))
    typer.echo(f"{task.id}\t{task.status.value}")


@task_app.command("recover")
def task_recover() -> None:
    """Return tasks left running by a crashed process to pending.

    Every task command does this on start; this command reports what it found.
    """

    async def _recover():
        _, recovered = await _open_supervisor()
        return recovered

    recovered = asyncio.run(_recover())
    if not recovered:
        typer.echo("No interrupted tasks")
        return
    for task_id in recovered:
        typer.echo(f"{task_id}\tpending")
