"""Tests for the task registry and job record store."""

import pytest

from chunkflow.chunking import build_job
from chunkflow.contracts import Checkpoint, ChunkStatus, JobStatus, TaskKind, TaskStatus
from chunkflow.errors import (
    ChunkNotFoundError,
    ImmutableFieldError,
    JobNotFoundError,
    StaleRunError,
    TaskCancelled,
    TaskNotFoundError,
)


@pytest.mark.asyncio
async def test_create_task_starts_pending_and_notifies(store):
    snapshots = []
    unsubscribe = store.subscribe(snapshots.append)

    task = await store.create_task(TaskKind.TRANSLATE_ALL, "job_1")

    assert task.status == TaskStatus.PENDING
    assert store.get_task(task.id).message == "Waiting to start"
    assert task.id in snapshots[-1]

    unsubscribe()
    await store.update_task(task.id, message="changed")
    assert len(snapshots) == 1


@pytest.mark.asyncio
async def test_get_task_returns_copies(store):
    task = await store.create_task(TaskKind.TRANSLATE_ALL, "job_1")
    copy = store.get_task(task.id)
    copy.message = "mutated"
    assert store.get_task(task.id).message == "Waiting to start"


@pytest.mark.asyncio
async def test_running_progress_is_monotonic_within_a_run(store):
    task = await store.create_task(TaskKind.TRANSLATE_ALL, "job_1")
    await store.update_task(task.id, status=TaskStatus.RUNNING, metadata={"run_id": "run_a"})

    await store.update_task(task.id, progress=0.5)
    updated = await store.update_task(task.id, progress=0.2)
    assert updated.progress == 0.5

    capped = await store.update_task(task.id, progress=1.0)
    assert capped.progress < 1.0

    restarted = await store.update_task(
        task.id, status=TaskStatus.RUNNING, progress=0.0, metadata={"run_id": "run_b"}
    )
    assert restarted.progress == 0.0


@pytest.mark.asyncio
async def test_completion_forces_full_progress(store):
    task = await store.create_task(TaskKind.TRANSLATE_ALL, "job_1")
    await store.update_task(task.id, status=TaskStatus.RUNNING, progress=0.3)
    done = await store.update_task(task.id, status=TaskStatus.COMPLETED)
    assert done.progress == 1.0


@pytest.mark.asyncio
async def test_terminal_status_is_sticky(store):
    task = await store.create_task(TaskKind.TRANSLATE_ALL, "job_1")
    await store.update_task(task.id, status=TaskStatus.CANCELLED)

    after = await store.update_task(task.id, status=TaskStatus.RUNNING, progress=0.4)

    assert after.status == TaskStatus.CANCELLED
    assert store.get_task(task.id).status == TaskStatus.CANCELLED


@pytest.mark.asyncio
async def test_metadata_is_merged(store):
    task = await store.create_task(TaskKind.TRANSLATE_ALL, "job_1", metadata={"a": 1})
    updated = await store.update_task(task.id, metadata={"b": 2})
    assert updated.metadata == {"a": 1, "b": 2}


@pytest.mark.asyncio
async def test_expected_run_id_rejects_stale_writes(store):
    task = await store.create_task(TaskKind.TRANSLATE_ALL, "job_1")
    await store.update_task(task.id, status=TaskStatus.RUNNING, metadata={"run_id": "run_new"})

    with pytest.raises(StaleRunError):
        await store.update_task(task.id, expected_run_id="run_old", progress=0.9)
    assert store.get_task(task.id).progress == 0.0


@pytest.mark.asyncio
async def test_unknown_task_and_job(store):
    with pytest.raises(TaskNotFoundError):
        await store.update_task("task_missing", message="x")
    with pytest.raises(JobNotFoundError):
        await store.get_job("job_missing")
    assert await store.find_job("job_missing") is None


@pytest.mark.asyncio
async def test_listener_errors_do_not_break_updates(store):
    def broken(_snapshot):
        raise RuntimeError("observer crashed")

    store.subscribe(broken)
    task = await store.create_task(TaskKind.TRANSLATE_ALL, "job_1")
    assert store.get_task(task.id) is not None


@pytest.mark.asyncio
async def test_update_chunk_merges_results_and_protects_text(store):
    record = await store.create_job(build_job("story", "하나\n둘", chunk_size=3))
    chunk_id = record.chunks[0].id

    await store.update_chunk(record.id, chunk_id, results={"translated": "One"})
    updated = await store.update_chunk(
        record.id, chunk_id, status=ChunkStatus.COMPLETED, results={"final": "One."}
    )
    assert updated.results.translated == "One"
    assert updated.results.final == "One."

    with pytest.raises(ImmutableFieldError):
        await store.update_chunk(record.id, chunk_id, text="changed")
    with pytest.raises(ChunkNotFoundError):
        await store.update_chunk(record.id, "chunk_99", status=ChunkStatus.FAILED)

    reloaded = await store.get_job(record.id)
    assert reloaded.chunks[0].text == "하나"
    assert reloaded.chunks[0].status == ChunkStatus.COMPLETED


@pytest.mark.asyncio
async def test_load_restores_persisted_tasks(store, repository):
    from chunkflow.store import TaskStore

    task = await store.create_task(TaskKind.EXTRACT_GLOSSARY, "job_1")

    fresh = TaskStore(repository)
    await fresh.load()

    assert fresh.get_task(task.id).kind == TaskKind.EXTRACT_GLOSSARY
    assert [t.id for t in fresh.list_tasks("job_1")] == [task.id]
    assert fresh.list_tasks("job_2") == []


async def _owned_job(store, run_id="run_current"):
    record = await store.create_job(build_job("story", "하나\n둘", chunk_size=3))
    task = await store.create_task(TaskKind.TRANSLATE_ALL, record.id)
    await store.update_task(task.id, status=TaskStatus.RUNNING, metadata={"run_id": run_id})
    return record, task


@pytest.mark.asyncio
async def test_job_and_chunk_writes_require_the_current_run(store):
    record, task = await _owned_job(store)
    chunk_id = record.chunks[0].id

    with pytest.raises(StaleRunError):
        await store.update_chunk(
            record.id,
            chunk_id,
            task_id=task.id,
            expected_run_id="run_old",
            results={"translated": "stale"},
        )
    with pytest.raises(StaleRunError):
        await store.update_job(
            record.id, task_id=task.id, expected_run_id="run_old", status=JobStatus.TRANSLATING
        )
    with pytest.raises(StaleRunError):
        await store.save_checkpoint(
            record.id,
            Checkpoint(processed_count=1, total_units=2),
            task_id=task.id,
            expected_run_id="run_old",
        )

    reloaded = await store.get_job(record.id)
    assert reloaded.chunks[0].results.translated is None
    assert reloaded.status == JobStatus.SETUP
    assert reloaded.checkpoint is None

    await store.update_chunk(
        record.id,
        chunk_id,
        task_id=task.id,
        expected_run_id="run_current",
        results={"translated": "One"},
    )
    reloaded = await store.get_job(record.id)
    assert reloaded.chunks[0].results.translated == "One"


@pytest.mark.asyncio
async def test_guarded_writes_stop_once_task_leaves_running(store):
    record, task = await _owned_job(store)
    chunk_id = record.chunks[0].id

    await store.update_task(task.id, status=TaskStatus.PENDING)
    with pytest.raises(StaleRunError):
        await store.update_chunk(
            record.id, chunk_id, task_id=task.id, expected_run_id="run_current", error="x"
        )

    await store.update_task(task.id, status=TaskStatus.CANCELLED)
    with pytest.raises(TaskCancelled):
        await store.update_job(
            record.id, task_id=task.id, expected_run_id="run_current", translation_progress=0.5
        )
    assert (await store.get_job(record.id)).translation_progress == 0.0


@pytest.mark.asyncio
async def test_delete_job(store):
    record, task = await _owned_job(store)

    with pytest.raises(ValueError):
        await store.delete_job(record.id)
    assert await store.find_job(record.id) is not None

    await store.update_task(task.id, status=TaskStatus.COMPLETED)
    await store.delete_job(record.id)
    assert await store.find_job(record.id) is None

    with pytest.raises(JobNotFoundError):
        await store.delete_job(record.id)
