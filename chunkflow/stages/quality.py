"""Quality gate scoring stage."""

from __future__ import annotations

import logging
from typing import List, Optional

from pydantic import BaseModel, Field, ValidationError

from ..constants import PARSE_FAILURE_SCORE
from ..errors import StageOutputError
from ..llm import TextGenerator
from . import prompts
from .parsing import parse_json_response

logger = logging.getLogger(__name__)


class QualityReport(BaseModel):
    overall_score: float = 0
    passes: bool = True
    major_issues: List[str] = Field(default_factory=list)
    minor_issues: List[str] = Field(default_factory=list)
    specific_improvements: List[str] = Field(default_factory=list)

    @property
    def all_issues(self) -> List[str]:
        return [*self.major_issues, *self.minor_issues]


class QualityStage:
    def __init__(
        self,
        generator: TextGenerator,
        language: str = "en",
        custom_prompt: Optional[str] = None,
        parse_failure_score: float = PARSE_FAILURE_SCORE,
    ) -> None:
        self.generator = generator
        self.instruction = prompts.instruction_for(prompts.QUALITY, language, custom_prompt)
        self.parse_failure_score = parse_failure_score

    async def check(self, text: str, source_text: Optional[str] = None) -> QualityReport:
        prompt = f"{self.instruction}\n\nReview this translation:\n\n{text}"
        if source_text:
            prompt += f"\n\nOriginal Korean text:\n{source_text}"
        response = await self.generator.generate(prompt)

        try:
            data = parse_json_response(response)
            if not isinstance(data, dict):
                raise StageOutputError("Quality response is not a JSON object")
            return QualityReport.model_validate(data)
        except (StageOutputError, ValidationError) as exc:
            logger.warning(f"Failed to parse quality check result: {exc}")
            return QualityReport(
                overall_score=self.parse_failure_score,
                passes=True,
                minor_issues=["Failed to parse quality check response"],
            )
