"""Bodies for each task kind.

Every body receives the :class:`RunContext` of its run and only touches
tasks and job records through it. Bodies check the context before and after
every generator call, and every job or chunk write is refused once the run
no longer owns its task.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from .batch import ResumableBatchRunner
from .chunking import split_units
from .context import RunContext
from .contracts import Chunk, ChunkStatus, JobRecord, JobStatus
from .errors import ChunkNotFoundError, PipelineError, RunInterrupted
from .pipeline import ChunkPipeline, results_from_state
from .stages import (
    GlossaryExtractionStage,
    MatchingStage,
    PublishStage,
    ReviewStage,
    consolidate_glossary,
)
from .utils.retry import with_retry

logger = logging.getLogger(__name__)


def compute_previous_context(record: JobRecord, index: int, chars: int) -> Optional[str]:
    """Tail of the best text of the chunk before ``index``, if any."""
    previous = record.chunk_at(index - 1)
    if previous is None:
        return None
    text = previous.best_text()
    if not text:
        return None
    return text[-chars:] if chars > 0 else text


def _target_chunk(ctx: RunContext, record: JobRecord) -> Chunk:
    chunk = record.get_chunk(ctx.chunk_id or "")
    if chunk is None:
        raise ChunkNotFoundError(record.id, ctx.chunk_id or "")
    return chunk


async def _refresh_translation_progress(ctx: RunContext) -> float:
    record = await ctx.store.get_job(ctx.job_id)
    total = len(record.chunks)
    done = sum(1 for c in record.chunks if c.status == ChunkStatus.COMPLETED)
    progress = done / total if total else 0.0
    changes: Dict[str, Any] = {"translation_progress": progress}
    if total and done == total:
        changes["status"] = JobStatus.TRANSLATION_COMPLETED
    await ctx.update_job(**changes)
    return progress


async def _transform_chunk(
    ctx: RunContext,
    pipeline: ChunkPipeline,
    chunk: Chunk,
    previous_context: Optional[str],
) -> str:
    """Run the pipeline for one chunk and write its results back.

    Raises ``PipelineError`` after marking the chunk failed when a required
    stage failed.
    """
    metadata = chunk.metadata
    instruction = ctx.task.metadata.get("custom_instruction")
    if instruction:
        metadata = metadata.model_copy(update={"custom_instruction": instruction})

    await ctx.update_chunk(chunk.id, status=ChunkStatus.PROCESSING, error=None)

    state = await pipeline.process_one(
        chunk.text, metadata, previous_context, guard=ctx.check, run_id=ctx.run_id
    )

    if state.get("error"):
        await ctx.update_chunk(chunk.id, status=ChunkStatus.FAILED, error=state["error"])
        raise PipelineError(
            f"Chunk {chunk.index + 1} failed at {state.get('error_node')}: {state['error']}",
            stage=state.get("error_node"),
        )

    await ctx.update_chunk(
        chunk.id,
        status=ChunkStatus.COMPLETED,
        results=results_from_state(state),
        error=None,
    )
    logger.info(
        f"Chunk {chunk.index + 1} done (score {state.get('quality_score')}, "
        f"retries {state.get('retry_count', 0)}, calls {state.get('llm_calls', 0)})"
    )
    return state["output"]


async def translate_all(ctx: RunContext) -> None:
    record = await ctx.store.get_job(ctx.job_id)
    chunks = record.chunks
    total = len(chunks)
    if not total:
        raise PipelineError("Job has no chunks to translate")

    settings = ctx.config.pipeline
    pipeline = ChunkPipeline.for_job(record, ctx.generators, settings)
    await ctx.update_job(status=JobStatus.TRANSLATING)

    texts = {c.index: c.best_text() for c in chunks}
    done = sum(1 for c in chunks if c.status == ChunkStatus.COMPLETED)
    failed: List[int] = []

    for chunk in chunks:
        if chunk.status == ChunkStatus.COMPLETED:
            logger.debug(f"Skipping completed chunk {chunk.index + 1}")
            continue
        await ctx.report(done / total, f"Translating chunk {chunk.index + 1}/{total}")

        previous = texts.get(chunk.index - 1) or None
        if previous and settings.previous_context_chars > 0:
            previous = previous[-settings.previous_context_chars :]
        try:
            texts[chunk.index] = await _transform_chunk(ctx, pipeline, chunk, previous)
            done += 1
        except PipelineError as exc:
            logger.error(str(exc))
            failed.append(chunk.index + 1)

        await ctx.update_job(translation_progress=done / total)

    if failed:
        listed = ", ".join(str(i) for i in failed)
        raise PipelineError(f"{len(failed)} of {total} chunks failed (chunks {listed})")

    await ctx.update_job(status=JobStatus.TRANSLATION_COMPLETED, translation_progress=1.0)


async def translate_chunk(ctx: RunContext) -> None:
    record = await ctx.store.get_job(ctx.job_id)
    chunk = _target_chunk(ctx, record)
    previous = compute_previous_context(
        record, chunk.index, ctx.config.pipeline.previous_context_chars
    )
    pipeline = ChunkPipeline.for_job(record, ctx.generators, ctx.config.pipeline)
    await ctx.report(0.1, f"Translating chunk {chunk.index + 1}")
    await _transform_chunk(ctx, pipeline, chunk, previous)
    await _refresh_translation_progress(ctx)


async def retranslate_chunk(ctx: RunContext) -> None:
    """Re-run one chunk, reusing the context captured on the first run."""
    record = await ctx.store.get_job(ctx.job_id)
    chunk = _target_chunk(ctx, record)

    if "previous_context" in ctx.task.metadata:
        previous = ctx.task.metadata["previous_context"]
    else:
        previous = compute_previous_context(
            record, chunk.index, ctx.config.pipeline.previous_context_chars
        )
        await ctx.remember(previous_context=previous)

    pipeline = ChunkPipeline.for_job(record, ctx.generators, ctx.config.pipeline)
    await ctx.report(0.1, f"Retranslating chunk {chunk.index + 1}")
    await _transform_chunk(ctx, pipeline, chunk, previous)
    await _refresh_translation_progress(ctx)


async def match_paragraphs(ctx: RunContext) -> Optional[str]:
    record = await ctx.store.get_job(ctx.job_id)
    chunk = _target_chunk(ctx, record)
    generator = ctx.generators.get("matching")
    if generator is None:
        return "Paragraph matching is not configured; nothing to do"

    target = chunk.best_text()
    if not target:
        raise PipelineError(f"Chunk {chunk.index + 1} has no translation to match", "matching")

    stage = MatchingStage(generator)
    settings = ctx.config.pipeline
    await ctx.report(0.1, f"Matching paragraphs for chunk {chunk.index + 1}")
    result = await ctx.call(
        lambda: with_retry(
            lambda: stage.match(chunk.text, target),
            attempts=settings.post_process_attempts,
            delay=settings.post_process_delay,
        )
    )
    await ctx.update_chunk(chunk.id, results={"paragraph_matches": result.model_dump()})


async def review_chunk(ctx: RunContext) -> Optional[str]:
    record = await ctx.store.get_job(ctx.job_id)
    chunk = _target_chunk(ctx, record)
    if record.language != "en":
        return "Review is only available for English translations"
    generator = ctx.generators.get("review")
    if generator is None:
        return "Review is not configured; nothing to do"

    target = chunk.best_text()
    if not target:
        raise PipelineError(f"Chunk {chunk.index + 1} has no translation to review", "review")

    stage = ReviewStage(generator, record.prompts.get("review"))
    settings = ctx.config.pipeline
    await ctx.report(0.1, f"Reviewing chunk {chunk.index + 1}")
    issues = await ctx.call(
        lambda: with_retry(
            lambda: stage.review(chunk.text, target),
            attempts=settings.post_process_attempts,
            delay=settings.post_process_delay,
        )
    )
    await ctx.update_chunk(chunk.id, results={"review_issues": [i.model_dump() for i in issues]})


async def extract_glossary(ctx: RunContext) -> None:
    """Extract a glossary from the job's source text, resuming from its checkpoint."""
    record = await ctx.store.get_job(ctx.job_id)
    generator = ctx.generators.get("glossary")
    if generator is None:
        raise PipelineError("No generator configured for glossary extraction", "glossary")

    text = record.source_text or "\n".join(c.text for c in record.chunks)
    units = split_units(text, ctx.config.batch.unit_size)
    if not units:
        raise PipelineError("Job has no source text to analyze", "glossary")

    checkpoint = record.checkpoint
    if ctx.task.metadata.get("restart") or (
        checkpoint is not None and checkpoint.total_units != len(units)
    ):
        checkpoint = None

    stage = GlossaryExtractionStage(generator, record.language, record.prompts.get("glossary"))
    await ctx.update_job(status=JobStatus.GLOSSARY_RUNNING)

    async def process_unit(index: int, unit: str) -> Dict[str, Any]:
        return await ctx.call(lambda: stage.extract(unit, index))

    async def progress(processed: int, total: int) -> None:
        await ctx.report(processed / total, f"Analyzed {processed}/{total} segments")

    runner = ResumableBatchRunner(
        process_unit,
        consolidate_glossary,
        ctx.save_checkpoint,
        on_progress=progress,
        guard=ctx.check,
        attempts=ctx.config.pipeline.post_process_attempts,
        delay=ctx.config.pipeline.post_process_delay,
    )
    final = await runner.run_batch(units, checkpoint)

    await ctx.update_job(glossary=final.artifact, status=JobStatus.GLOSSARY_COMPLETED)


def _publish_stage(ctx: RunContext, record: JobRecord) -> Optional[PublishStage]:
    generator = ctx.generators.get("publish")
    if generator is None:
        return None
    prompt = ctx.task.metadata.get("prompt") or record.prompts.get("publish")
    return PublishStage(generator, record.language, prompt)


async def _publish_one(ctx: RunContext, stage: Optional[PublishStage], chunk: Chunk) -> None:
    """Format one chunk's best text and store it as its final text.

    Raises ``PipelineError`` after marking the chunk failed when formatting
    failed. Without a publish generator the text is stored unchanged.
    """
    text = chunk.best_text() or chunk.text
    await ctx.update_chunk(chunk.id, status=ChunkStatus.PROCESSING, error=None)
    try:
        formatted = await ctx.call(lambda: stage.publish(text)) if stage else text
    except RunInterrupted:
        raise
    except Exception as exc:
        await ctx.update_chunk(chunk.id, status=ChunkStatus.FAILED, error=str(exc))
        raise PipelineError(
            f"Chunk {chunk.index + 1} failed at publish: {exc}", "publish"
        ) from exc

    await ctx.update_chunk(
        chunk.id, status=ChunkStatus.COMPLETED, results={"final": formatted}, error=None
    )


async def publish(ctx: RunContext) -> Optional[str]:
    """Format every chunk for publication.

    A failing chunk is marked failed and the remaining chunks are still
    published; the task completes with a message naming the failures.
    """
    record = await ctx.store.get_job(ctx.job_id)
    chunks = record.chunks
    total = len(chunks)
    if not total:
        raise PipelineError("Job has no chunks to publish", "publish")

    stage = _publish_stage(ctx, record)
    failed: List[int] = []
    for position, chunk in enumerate(chunks):
        await ctx.report(position / total, f"Publishing chunk {chunk.index + 1}/{total}")
        try:
            await _publish_one(ctx, stage, chunk)
        except PipelineError as exc:
            logger.error(str(exc))
            failed.append(chunk.index + 1)

    await _refresh_translation_progress(ctx)
    if failed:
        listed = ", ".join(str(i) for i in failed)
        return f"Published {total - len(failed)} of {total} chunks (failed: chunks {listed})"
    return f"Published {total} chunks"


async def publish_chunk(ctx: RunContext) -> Optional[str]:
    record = await ctx.store.get_job(ctx.job_id)
    chunk = _target_chunk(ctx, record)
    await ctx.report(0.1, f"Reprocessing chunk {chunk.index + 1}")
    await _publish_one(ctx, _publish_stage(ctx, record), chunk)
    await _refresh_translation_progress(ctx)
    return f"Chunk {chunk.index + 1} reprocessed"
