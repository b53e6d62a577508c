"""Structural alignment of source paragraphs to the target layout."""

from __future__ import annotations

import logging
import re
from typing import List

from ..contracts import ParagraphMatchResult, UnmatchedSegment
from ..errors import StageOutputError
from ..llm import TextGenerator
from . import prompts
from .parsing import parse_json_response

logger = logging.getLogger(__name__)

# A single paragraph longer than this probably lost its blank-line breaks.
_SINGLE_PARAGRAPH_FALLBACK_CHARS = 200


def split_paragraphs(text: str) -> List[str]:
    """Split on blank lines, falling back to single newlines for flat text."""
    paragraphs = [p for p in re.split(r"\n\n+", text) if p.strip()]
    if len(paragraphs) <= 1 and len(text) > _SINGLE_PARAGRAPH_FALLBACK_CHARS:
        lines = [p for p in re.split(r"\n+", text) if p.strip()]
        if len(lines) > len(paragraphs):
            logger.debug("Target text has no blank-line breaks; splitting on newlines")
            paragraphs = lines
    return paragraphs


def _fit(paragraphs: List[str], count: int) -> List[str]:
    if len(paragraphs) > count:
        head, tail = paragraphs[: count - 1], paragraphs[count - 1 :]
        return head + ["\n".join(tail)]
    return paragraphs + [""] * (count - len(paragraphs))


class MatchingStage:
    def __init__(self, generator: TextGenerator) -> None:
        self.generator = generator

    async def match(self, source_text: str, target_text: str) -> ParagraphMatchResult:
        target_paragraphs = split_paragraphs(target_text)
        if not target_paragraphs:
            raise StageOutputError("No paragraphs found in target text")

        numbered = "\n\n---\n\n".join(
            f"[T-{i}]\n{para}" for i, para in enumerate(target_paragraphs)
        )
        prompt = (
            prompts.MATCHING.format(count=len(target_paragraphs))
            + f"\n\nTARGET PARAGRAPHS:\n{numbered}\n\nKOREAN SOURCE TEXT:\n{source_text}"
        )
        data = parse_json_response(await self.generator.generate(prompt))
        if not isinstance(data, dict) or not isinstance(data.get("sourceParagraphs"), list):
            raise StageOutputError("Matching response has no sourceParagraphs list")

        count = len(target_paragraphs)
        unmatched = []
        for item in data.get("unmatchedSource") or []:
            if not isinstance(item, dict) or not item.get("text"):
                continue
            position = item.get("beforeTargetIndex", count)
            position = position if isinstance(position, int) else count
            unmatched.append(
                UnmatchedSegment(
                    text=str(item["text"]),
                    before_target_index=max(0, min(count, position)),
                )
            )

        return ParagraphMatchResult(
            target_paragraphs=target_paragraphs,
            source_paragraphs=_fit([str(p) for p in data["sourceParagraphs"]], count),
            unmatched_source=unmatched,
        )
