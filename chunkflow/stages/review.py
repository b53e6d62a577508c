from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field, ValidationError

from ..contracts import ReviewIssue
from ..errors import StageOutputError
from ..llm import TextGenerator
from . import prompts
from .parsing import parse_json_response


class _ReviewResponse(BaseModel):
    issues: List[ReviewIssue] = Field(min_length=1)


class ReviewStage:
    """Lists concrete problems in an English translation."""

    def __init__(self, generator: TextGenerator, custom_prompt: Optional[str] = None) -> None:
        self.generator = generator
        self.template = custom_prompt or prompts.REVIEW

    async def review(self, source_text: str, target_text: str) -> List[ReviewIssue]:
        prompt = self.template.replace("{source}", source_text).replace("{target}", target_text)
        data = parse_json_response(await self.generator.generate(prompt))
        try:
            return _ReviewResponse.model_validate(data).issues
        except ValidationError as exc:
            raise StageOutputError(f"Invalid review response: {exc}") from exc
