"""Checkpointed loop over sequential sub-units of one large input."""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from .contracts import Checkpoint
from .errors import RunInterrupted
from .utils.retry import with_retry

logger = logging.getLogger(__name__)

Partial = Optional[Dict[str, Any]]
UnitProcessor = Callable[[int, str], Awaitable[Partial]]
Consolidator = Callable[[List[Partial]], Dict[str, Any]]
CheckpointSaver = Callable[[Checkpoint], Awaitable[None]]
ProgressCallback = Callable[[int, int], Awaitable[None]]


class ResumableBatchRunner:
    """Process units in order, persisting a checkpoint after every unit.

    A unit that keeps failing after its retries is recorded as ``None`` and
    the batch moves on. Consolidation runs once over all partials and must
    be a pure function of them, so a resumed batch and one run from scratch
    end with the same artifact.
    """

    def __init__(
        self,
        process_unit: UnitProcessor,
        consolidate: Consolidator,
        save_checkpoint: CheckpointSaver,
        on_progress: Optional[ProgressCallback] = None,
        guard: Optional[Callable[[], None]] = None,
        attempts: int = 1,
        delay: float = 0.0,
    ) -> None:
        self.process_unit = process_unit
        self.consolidate = consolidate
        self.save_checkpoint = save_checkpoint
        self.on_progress = on_progress
        self.guard = guard or (lambda: None)
        self.attempts = attempts
        self.delay = delay

    async def run_batch(
        self, units: Sequence[str], checkpoint: Optional[Checkpoint] = None
    ) -> Checkpoint:
        total = len(units)
        resume_from = checkpoint.processed_count if checkpoint else 0
        if checkpoint and checkpoint.total_units not in (0, total):
            raise ValueError(
                f"Checkpoint covers {checkpoint.total_units} units but {total} were given"
            )
        resume_from = min(resume_from, total)

        partials: List[Partial] = list(checkpoint.partials[:resume_from]) if checkpoint else []
        partials.extend([None] * (resume_from - len(partials)))
        if resume_from:
            logger.info(f"Resuming batch at unit {resume_from + 1}/{total}")

        for index in range(resume_from, total):
            self.guard()
            partial = await self._process(index, units[index])
            self.guard()
            partials.append(partial)
            await self.save_checkpoint(
                Checkpoint(processed_count=index + 1, total_units=total, partials=list(partials))
            )
            if self.on_progress is not None:
                await self.on_progress(index + 1, total)

        self.guard()
        artifact = self.consolidate(list(partials))
        final = Checkpoint(
            processed_count=total, total_units=total, partials=list(partials), artifact=artifact
        )
        await self.save_checkpoint(final)
        logger.info(f"Batch finished: {sum(p is not None for p in partials)}/{total} units usable")
        return final

    async def _process(self, index: int, unit: str) -> Partial:
        try:
            return await with_retry(
                lambda: self.process_unit(index, unit), attempts=self.attempts, delay=self.delay
            )
        except RunInterrupted:
            raise
        except Exception as exc:
            logger.warning(f"Unit {index + 1} failed, continuing: {exc}")
            return None
