import pytest

from chunkflow.chunking import build_job
from chunkflow.contracts import (
    Checkpoint,
    ChunkStatus,
    JobFilter,
    JobStatus,
    Task,
    TaskKind,
    TaskStatus,
)
from chunkflow.persistence import InMemoryJobRepository, SQLiteJobRepository


@pytest.fixture(params=["memory", "sqlite"])
def repo(request, tmp_path):
    if request.param == "memory":
        yield InMemoryJobRepository()
    else:
        repository = SQLiteJobRepository(tmp_path / "jobs.db")
        yield repository
        repository.close()


@pytest.mark.asyncio
async def test_job_crud(repo):
    record = build_job("Chapter 1", "하나\n둘\n셋", chunk_size=2)
    record.chunks[0].status = ChunkStatus.COMPLETED
    record.chunks[0].results.final = "One."
    record.checkpoint = Checkpoint(processed_count=1, total_units=2, partials=[{"terms": []}])

    await repo.save_job(record)
    loaded = await repo.load_job(record.id)

    assert loaded is not None
    assert loaded.name == "Chapter 1"
    assert [c.text for c in loaded.chunks] == ["하나", "둘", "셋"]
    assert loaded.chunks[0].best_text() == "One."
    assert loaded.checkpoint.processed_count == 1

    await repo.delete_job(record.id)
    assert await repo.load_job(record.id) is None


@pytest.mark.asyncio
async def test_loaded_records_are_independent_copies(repo):
    record = build_job("copy", "text")
    await repo.save_job(record)

    loaded = await repo.load_job(record.id)
    loaded.name = "changed"

    assert (await repo.load_job(record.id)).name == "copy"


@pytest.mark.asyncio
async def test_list_jobs_filters(repo):
    first = build_job("alpha", "a")
    second = build_job("beta", "b")
    second.status = JobStatus.TRANSLATING
    await repo.save_job(first)
    await repo.save_job(second)

    assert {r.id for r in await repo.list_jobs()} == {first.id, second.id}
    translating = await repo.list_jobs(JobFilter(status=JobStatus.TRANSLATING))
    assert [r.id for r in translating] == [second.id]
    named = await repo.list_jobs(JobFilter(name="alpha"))
    assert [r.id for r in named] == [first.id]


@pytest.mark.asyncio
async def test_task_round_trip(repo):
    task = Task(kind=TaskKind.TRANSLATE_CHUNK, job_id="job_1", chunk_id="chunk_0")
    await repo.save_task(task)

    running = task.model_copy(
        update={"status": TaskStatus.RUNNING, "metadata": {"run_id": "run_1"}}
    )
    await repo.save_task(running)

    loaded = await repo.load_task(task.id)
    assert loaded.status == TaskStatus.RUNNING
    assert loaded.run_id == "run_1"
    assert [t.id for t in await repo.list_tasks()] == [task.id]
    assert await repo.load_task("task_missing") is None
