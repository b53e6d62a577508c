"""Chunk transformation pipeline.

``translate → enhance → quality_gate → {enhance | proofread | layout}``,
``proofread → layout → post_process → END``.

The quality gate sends a chunk back to ``enhance`` with its issues attached
while the score is below the threshold, retries remain and at least one major
issue was reported. High scores skip ``proofread``. ``post_process`` runs
paragraph matching and review concurrently; both are optional and their
failures never fail the chunk.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, Mapping, Optional

from .config import PipelineSettings
from .contracts import ChunkMetadata, ChunkResults, JobRecord
from .graph import END, START, CompiledGraph, State, WorkflowGraph
from .llm import TextGenerator
from .stages import (
    EnhancementStage,
    LayoutStage,
    MatchingStage,
    ProofreadStage,
    QualityStage,
    ReviewStage,
    TranslationStage,
)
from .utils.retry import with_retry

logger = logging.getLogger(__name__)

# Later stages win; the first non-empty value is the best available output.
OUTPUT_PRECEDENCE = ("final", "proofread", "enhanced", "translated")

Guard = Callable[[], None]


def best_output(state: Mapping[str, Any]) -> str:
    for key in OUTPUT_PRECEDENCE:
        if state.get(key):
            return state[key]
    return ""


def results_from_state(state: Mapping[str, Any]) -> ChunkResults:
    """Collect the artifacts of a finished pipeline run."""
    return ChunkResults(
        translated=state.get("translated"),
        enhanced=state.get("enhanced"),
        proofread=state.get("proofread"),
        final=state.get("final"),
        quality_score=state.get("quality_score"),
        quality_issues=state.get("quality_issues") or [],
        retry_count=state.get("retry_count", 0),
        paragraph_matches=state.get("paragraph_matches"),
        review_issues=state.get("review_issues"),
    )


class ChunkPipeline:
    """Translate, refine and check one chunk of source text."""

    def __init__(
        self,
        generators: Mapping[str, TextGenerator],
        glossary: Any = None,
        language: str = "en",
        prompts: Optional[Mapping[str, str]] = None,
        max_retries: Optional[int] = None,
        enable_proofreader: bool = True,
        settings: Optional[PipelineSettings] = None,
    ) -> None:
        self.settings = settings or PipelineSettings()
        self.language = language
        self.max_retries = self.settings.max_retries if max_retries is None else max_retries
        self.enable_proofreader = enable_proofreader
        prompts = prompts or {}

        def _stage(name: str, factory: Callable[[TextGenerator], Any]) -> Any:
            generator = generators.get(name)
            if generator is None:
                logger.info(f"No generator configured for '{name}'; stage will pass through")
                return None
            return factory(generator)

        self.translation = _stage(
            "translation",
            lambda g: TranslationStage(g, glossary, language, prompts.get("translation")),
        )
        self.enhancement = _stage(
            "enhancement",
            lambda g: EnhancementStage(g, glossary, language, prompts.get("enhancement")),
        )
        self.quality = _stage(
            "quality",
            lambda g: QualityStage(
                g, language, prompts.get("quality"), self.settings.parse_failure_score
            ),
        )
        self.proofreader = _stage(
            "proofreader", lambda g: ProofreadStage(g, language, prompts.get("proofreader"))
        )
        self.layout = _stage("layout", lambda g: LayoutStage(g, language, prompts.get("layout")))
        self.matching = _stage("matching", MatchingStage)
        self.review = _stage("review", lambda g: ReviewStage(g, prompts.get("review")))

        self.graph = self._build_graph()

    @classmethod
    def for_job(
        cls,
        record: JobRecord,
        generators: Mapping[str, TextGenerator],
        settings: Optional[PipelineSettings] = None,
    ) -> "ChunkPipeline":
        return cls(
            generators,
            glossary=record.glossary,
            language=record.language,
            prompts=record.prompts,
            max_retries=record.max_retries,
            enable_proofreader=record.enable_proofreader,
            settings=settings,
        )

    def _build_graph(self) -> CompiledGraph:
        graph = WorkflowGraph()
        graph.add_node("translate", self._translate_node)
        graph.add_node("enhance", self._enhance_node)
        graph.add_node("quality_gate", self._quality_gate_node)
        graph.add_node("proofread", self._proofread_node)
        graph.add_node("layout", self._layout_node)
        graph.add_node("post_process", self._post_process_node)

        graph.add_edge(START, "translate")
        graph.add_edge("translate", "enhance")
        graph.add_edge("enhance", "quality_gate")
        graph.add_conditional_edges(
            "quality_gate",
            self.route_after_quality,
            {"enhance": "enhance", "proofread": "proofread", "layout": "layout"},
        )
        graph.add_edge("proofread", "layout")
        graph.add_edge("layout", "post_process")
        graph.add_edge("post_process", END)
        return graph.compile()

    async def process_one(
        self,
        source_text: str,
        metadata: Optional[ChunkMetadata] = None,
        previous_context: Optional[str] = None,
        guard: Optional[Guard] = None,
        run_id: Optional[str] = None,
    ) -> State:
        """Run the pipeline for one chunk and return the final state.

        The state keeps every intermediate artifact plus ``output``, the best
        available text. ``error`` is set when a required stage failed.
        ``guard`` is called before every stage and may raise to stop the run.
        """
        initial: State = {
            "source_text": source_text,
            "chunk_metadata": metadata,
            "previous_context": previous_context,
            "retry_count": 0,
            "max_retries": self.max_retries,
            "enable_proofreader": self.enable_proofreader,
            "llm_calls": 0,
            "run_id": run_id,
        }
        before_step = (lambda _node, _state: guard()) if guard is not None else None
        state = await self.graph.run(initial, before_step=before_step)
        state["output"] = best_output(state)
        return state

    # ------------------------------------------------------------------
    # Routing
    def route_after_quality(self, state: State) -> str:
        if state.get("needs_reenhancement") and self.enhancement and not state.get("error"):
            return "enhance"
        score = state.get("quality_score") or 0
        if (
            score >= self.settings.skip_proofread_score
            or not state.get("enable_proofreader")
            or not self.proofreader
        ):
            return "layout"
        return "proofread"

    # ------------------------------------------------------------------
    # Nodes
    async def _translate_node(self, state: State) -> Dict[str, Any]:
        if not self.translation:
            return {"translated": state["source_text"], "current_stage": "translate"}
        translated = await self.translation.translate(
            state["source_text"], state.get("chunk_metadata"), state.get("previous_context")
        )
        return {
            "translated": translated,
            "current_stage": "translate",
            "llm_calls": state["llm_calls"] + 1,
        }

    async def _enhance_node(self, state: State) -> Dict[str, Any]:
        if not self.enhancement:
            return {"enhanced": state.get("translated"), "current_stage": "enhance"}

        feedback = state.get("quality_issues") if state.get("retry_count", 0) > 0 else None
        if feedback:
            text = state.get("enhanced") or state.get("translated") or ""
        else:
            text = state.get("translated") or ""
        enhanced = await self.enhancement.enhance(text, state["source_text"], feedback)
        return {
            "enhanced": enhanced,
            "needs_reenhancement": False,
            "current_stage": "enhance",
            "llm_calls": state["llm_calls"] + 1,
            "enhance_runs": state.get("enhance_runs", 0) + 1,
        }

    async def _quality_gate_node(self, state: State) -> Dict[str, Any]:
        if not self.quality:
            return {
                "quality_score": 100,
                "quality_issues": [],
                "needs_reenhancement": False,
                "current_stage": "quality_gate",
            }

        report = await self.quality.check(state.get("enhanced") or "", state["source_text"])
        retry_count = state.get("retry_count", 0)
        needs_retry = (
            report.overall_score < self.settings.quality_threshold
            and retry_count < state.get("max_retries", self.max_retries)
            and bool(report.major_issues)
            and self.enhancement is not None
        )
        if needs_retry:
            logger.debug(
                f"Quality {report.overall_score} below threshold; retry {retry_count + 1}"
            )
        return {
            "quality_score": report.overall_score,
            "quality_issues": report.all_issues,
            "needs_reenhancement": needs_retry,
            "retry_count": retry_count + 1 if needs_retry else retry_count,
            "current_stage": "quality_gate",
            "llm_calls": state["llm_calls"] + 1,
        }

    async def _proofread_node(self, state: State) -> Dict[str, Any]:
        if not self.proofreader or not state.get("enable_proofreader"):
            return {"proofread": state.get("enhanced"), "current_stage": "proofread"}
        proofread = await self.proofreader.proofread(
            state.get("enhanced") or "", state["source_text"]
        )
        return {
            "proofread": proofread,
            "current_stage": "proofread",
            "llm_calls": state["llm_calls"] + 1,
        }

    async def _layout_node(self, state: State) -> Dict[str, Any]:
        text = best_output(state)
        if not self.layout:
            return {"final": text, "current_stage": "layout"}
        final = await self.layout.format(text)
        return {"final": final, "current_stage": "layout", "llm_calls": state["llm_calls"] + 1}

    async def _post_process_node(self, state: State) -> Dict[str, Any]:
        settled = await asyncio.gather(
            self.run_matching(state), self.run_review(state), return_exceptions=True
        )
        updates: Dict[str, Any] = {"current_stage": "post_process"}
        calls = 0
        for outcome in settled:
            if isinstance(outcome, BaseException):
                logger.warning(f"Post-process step failed (non-critical): {outcome}")
                continue
            calls += outcome.pop("llm_calls", 0)
            updates.update(outcome)
        updates["llm_calls"] = state["llm_calls"] + calls
        return updates

    async def run_matching(self, state: Mapping[str, Any]) -> Dict[str, Any]:
        """Align source paragraphs to the output; empty on any failure."""
        if not self.matching:
            return {}
        target, source = best_output(state), state.get("source_text")
        if not target or not source:
            logger.warning("Missing text for paragraph matching, skipping")
            return {}
        try:
            matches = await with_retry(
                lambda: self.matching.match(source, target),
                attempts=self.settings.post_process_attempts,
                delay=self.settings.post_process_delay,
            )
        except Exception as exc:
            logger.error(f"Paragraph matching failed after retry (non-critical): {exc}")
            return {}
        return {"paragraph_matches": matches, "llm_calls": 1}

    async def run_review(self, state: Mapping[str, Any]) -> Dict[str, Any]:
        """Review English output; empty for other targets or on failure."""
        if self.language != "en" or not self.review:
            return {}
        target, source = best_output(state), state.get("source_text")
        if not target or not source:
            return {}
        try:
            issues = await with_retry(
                lambda: self.review.review(source, target),
                attempts=self.settings.post_process_attempts,
                delay=self.settings.post_process_delay,
            )
        except Exception as exc:
            logger.error(f"Review step failed after retry (non-critical): {exc}")
            return {}
        return {"review_issues": issues, "llm_calls": 1}
