"""Resumable glossary extraction through the supervisor."""

import asyncio
import json

import pytest

from chunkflow import TaskSupervisor
from chunkflow.chunking import build_job
from chunkflow.config import BatchSettings, ChunkflowConfig
from chunkflow.contracts import JobStatus, TaskKind, TaskStatus

UNITS = ["unit-0", "unit-1", "unit-2", "unit-3"]


def _extract(prompt):
    unit = prompt.split("TEXT:\n", 1)[1]
    index = int(unit[-1])
    name = "Minho" if index % 2 == 0 else "Jisu"
    return json.dumps(
        {
            "characters": [{"name": name}],
            "terms": [{"original": "검기", "translation": f"aura {index}"}],
            "events": [{"name": f"event {index}"}],
        }
    )


class BlockingGlossary:
    """Extracts normally but blocks on the ``block_on``-th call."""

    def __init__(self, block_on):
        self.block_on = block_on
        self.calls = 0
        self.entered = asyncio.Event()
        self.gate = asyncio.Event()

    async def generate(self, prompt):
        self.calls += 1
        if self.calls == self.block_on:
            self.entered.set()
            await self.gate.wait()
        return _extract(prompt)


@pytest.fixture
def batch_config(fast_settings):
    return ChunkflowConfig(pipeline=fast_settings, batch=BatchSettings(unit_size=6))


async def _extract_job(store, supervisor):
    record = await store.create_job(build_job("story", "".join(UNITS)))
    task_id = await supervisor.create(TaskKind.EXTRACT_GLOSSARY, record.id)
    return record, task_id


@pytest.mark.asyncio
async def test_extraction_builds_consolidated_glossary(store, batch_config, scripted):
    glossary = scripted(reply=_extract)
    supervisor = TaskSupervisor(store, batch_config, generators={"glossary": glossary})
    record, task_id = await _extract_job(store, supervisor)

    await supervisor.run(task_id)

    assert glossary.calls == 4
    job = await store.get_job(record.id)
    assert job.status == JobStatus.GLOSSARY_COMPLETED
    assert job.checkpoint.processed_count == 4
    assert [c["name"] for c in job.glossary["characters"]] == ["Minho", "Jisu"]
    assert job.glossary["terms"] == [{"original": "검기", "translation": "aura 0"}]
    assert [e["chunk_index"] for e in job.glossary["events"]] == [0, 1, 2, 3]
    assert store.get_task(task_id).status == TaskStatus.COMPLETED


@pytest.mark.asyncio
async def test_interrupted_extraction_resumes_from_checkpoint(store, batch_config, scripted):
    baseline = TaskSupervisor(
        store, batch_config, generators={"glossary": scripted(reply=_extract)}
    )
    baseline_record, baseline_task = await _extract_job(store, baseline)
    await baseline.run(baseline_task)
    expected = (await store.get_job(baseline_record.id)).glossary

    blocking = BlockingGlossary(block_on=3)
    first = TaskSupervisor(store, batch_config, generators={"glossary": blocking})
    record, task_id = await _extract_job(store, first)
    future = first.start(task_id)
    await blocking.entered.wait()
    await first.cancel(task_id)
    blocking.gate.set()
    await future

    assert store.get_task(task_id).status == TaskStatus.CANCELLED
    interrupted = await store.get_job(record.id)
    assert interrupted.checkpoint.processed_count == 2
    assert interrupted.status == JobStatus.GLOSSARY_RUNNING

    resumed_generator = scripted(reply=_extract)
    second = TaskSupervisor(store, batch_config, generators={"glossary": resumed_generator})
    retry_id = await second.create(TaskKind.EXTRACT_GLOSSARY, record.id)
    await second.run(retry_id)

    assert resumed_generator.calls == 2
    assert ["unit-2" in p for p in resumed_generator.prompts] == [True, False]
    job = await store.get_job(record.id)
    assert job.glossary == expected
    assert job.status == JobStatus.GLOSSARY_COMPLETED


@pytest.mark.asyncio
async def test_failing_unit_is_skipped(store, batch_config, scripted):
    def flaky(prompt):
        if prompt.endswith("unit-1"):
            return RuntimeError("timeout")
        return _extract(prompt)

    glossary = scripted(reply=flaky)
    supervisor = TaskSupervisor(store, batch_config, generators={"glossary": glossary})
    record, task_id = await _extract_job(store, supervisor)

    await supervisor.run(task_id)

    job = await store.get_job(record.id)
    assert store.get_task(task_id).status == TaskStatus.COMPLETED
    assert job.checkpoint.partials[1] is None
    assert [e["name"] for e in job.glossary["events"]] == ["event 0", "event 2", "event 3"]


@pytest.mark.asyncio
async def test_extraction_without_generator_fails(store, batch_config):
    supervisor = TaskSupervisor(store, batch_config, generators={})
    _, task_id = await _extract_job(store, supervisor)

    await supervisor.run(task_id)

    task = store.get_task(task_id)
    assert task.status == TaskStatus.FAILED
    assert "glossary" in task.error
