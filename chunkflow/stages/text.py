"""Free-text stages: translate, enhance, proofread, layout and publish."""

from __future__ import annotations

from typing import Any, Iterable, List, Optional, Sequence

from ..contracts import ChunkMetadata
from ..llm import TextGenerator
from . import prompts


def _entries(items: Any) -> List[dict]:
    if not items:
        return []
    if isinstance(items, list):
        return [i for i in items if isinstance(i, dict)]
    if isinstance(items, dict):
        return [
            {"key": key, **value} if isinstance(value, dict) else {"key": key, "value": value}
            for key, value in items.items()
        ]
    return []


def _pair(entry: dict, source_keys: Iterable[str], target_keys: Iterable[str]) -> str:
    source = next((entry[k] for k in source_keys if entry.get(k)), "?")
    target = next((entry[k] for k in target_keys if entry.get(k)), "?")
    return f"{source} → {target}"


def format_glossary(glossary: Any, detailed: bool = True) -> str:
    """Render a glossary into prompt text.

    Accepts the dict shapes produced by glossary extraction or imported from
    JSON; a plain string glossary is passed through unchanged.
    """
    if not glossary:
        return ""
    if isinstance(glossary, str):
        return glossary.strip()
    if not isinstance(glossary, dict):
        return ""

    lines: List[str] = []
    characters = _entries(glossary.get("characters"))
    if characters:
        lines.append("Characters:")
        for char in characters:
            details = [
                _pair(
                    char,
                    ("korean_name", "name", "key"),
                    ("english_name", "english", "translation", "name"),
                )
            ]
            if detailed:
                for field in ("age", "gender", "personality", "honorifics"):
                    if char.get(field):
                        details.append(f"{field.capitalize()}: {char[field]}")
                tone = char.get("tone") or char.get("speech_style")
                if tone:
                    details.append(f"Tone: {tone}")
            lines.append(f"  - {', '.join(details)}")

    terms = _entries(glossary.get("terms"))
    if terms:
        lines.append("Terms:")
        for term in terms:
            lines.append(
                "  - "
                + _pair(term, ("original", "korean_name", "key"), ("translation", "english"))
            )

    places = _entries(glossary.get("places") or glossary.get("locations"))
    if places and detailed:
        lines.append("Places:")
        for place in places:
            lines.append(
                "  - "
                + _pair(
                    place,
                    ("korean_name", "name", "key"),
                    ("english_name", "english", "name"),
                )
            )

    style = glossary.get("style_guide")
    if isinstance(style, dict):
        hints = [f"{k.capitalize()}: {style[k]}" for k in ("genre", "tone") if style.get(k)]
        if hints:
            lines.append("Style Guide:")
            lines.extend(f"  {hint}" for hint in hints)

    return "\n".join(lines)


def _with_glossary(instruction: str, glossary: Any, detailed: bool) -> str:
    rendered = format_glossary(glossary, detailed=detailed)
    return f"{instruction}\n\nGlossary:\n{rendered}" if rendered else instruction


class TranslationStage:
    def __init__(
        self,
        generator: TextGenerator,
        glossary: Any = None,
        language: str = "en",
        custom_prompt: Optional[str] = None,
    ) -> None:
        self.generator = generator
        self.instruction = _with_glossary(
            prompts.instruction_for(prompts.TRANSLATION, language, custom_prompt),
            glossary,
            detailed=True,
        )

    async def translate(
        self,
        text: str,
        metadata: Optional[ChunkMetadata] = None,
        previous_context: Optional[str] = None,
    ) -> str:
        parts = [self.instruction, "Translate the following Korean text:"]
        if previous_context:
            parts.append(f"Previous context for continuity:\n{previous_context}")
        if metadata is not None and metadata.custom_instruction:
            parts.append(f"Custom instruction: {metadata.custom_instruction}")
        parts.append(text)
        return await self.generator.generate("\n\n".join(parts))


class EnhancementStage:
    def __init__(
        self,
        generator: TextGenerator,
        glossary: Any = None,
        language: str = "en",
        custom_prompt: Optional[str] = None,
    ) -> None:
        self.generator = generator
        self.instruction = _with_glossary(
            prompts.instruction_for(prompts.ENHANCEMENT, language, custom_prompt),
            glossary,
            detailed=False,
        )

    async def enhance(
        self,
        text: str,
        source_text: Optional[str] = None,
        feedback: Optional[Sequence[str]] = None,
    ) -> str:
        parts = [self.instruction, f"Enhance the following translated text:\n\n{text}"]
        if source_text:
            parts.append(f"Original Korean text for reference:\n{source_text}")
        if feedback:
            issues = "\n".join(f"- {item}" for item in feedback)
            parts.append(f"Quality feedback to address (fix these issues explicitly):\n{issues}")
        return await self.generator.generate("\n\n".join(parts))


class ProofreadStage:
    def __init__(
        self, generator: TextGenerator, language: str = "en", custom_prompt: Optional[str] = None
    ) -> None:
        self.generator = generator
        self.instruction = prompts.instruction_for(prompts.PROOFREADER, language, custom_prompt)

    async def proofread(self, text: str, source_text: Optional[str] = None) -> str:
        prompt = f"{self.instruction}\n\nProofread this text:\n\n{text}"
        if source_text:
            prompt += f"\n\nOriginal Korean text:\n{source_text}"
        return await self.generator.generate(prompt)


class LayoutStage:
    def __init__(
        self, generator: TextGenerator, language: str = "en", custom_prompt: Optional[str] = None
    ) -> None:
        self.generator = generator
        self.instruction = prompts.instruction_for(prompts.LAYOUT, language, custom_prompt)

    async def format(self, text: str) -> str:
        return await self.generator.generate(
            f"{self.instruction}\n\nFormat the following text:\n\n{text}"
        )


class PublishStage:
    """Reformats finished text for a publishing platform."""

    def __init__(
        self, generator: TextGenerator, language: str = "en", custom_prompt: Optional[str] = None
    ) -> None:
        self.generator = generator
        self.instruction = prompts.instruction_for(prompts.PUBLISH, language, custom_prompt)

    async def publish(self, text: str) -> str:
        return await self.generator.generate(
            f"{self.instruction}\n\nHere is the text to format:\n\n{text}"
        )
