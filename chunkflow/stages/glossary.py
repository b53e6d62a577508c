"""Glossary extraction from source text segments and their consolidation."""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

from ..errors import StageOutputError
from ..llm import TextGenerator
from . import prompts
from .parsing import parse_json_response

SECTIONS = ("characters", "locations", "terms", "events")

_LANGUAGE_NAMES = {"en": "English", "ja": "Japanese"}


class GlossaryExtractionStage:
    """Extracts characters, locations, terms and events from one text unit."""

    def __init__(
        self,
        generator: TextGenerator,
        language: str = "en",
        custom_prompt: Optional[str] = None,
    ) -> None:
        self.generator = generator
        self.instruction = custom_prompt or prompts.GLOSSARY.format(
            language=_LANGUAGE_NAMES.get(language, language)
        )

    async def extract(self, text: str, unit_index: int) -> Dict[str, List[dict]]:
        data = parse_json_response(
            await self.generator.generate(f"{self.instruction}\n\nTEXT:\n{text}")
        )
        if not isinstance(data, dict):
            raise StageOutputError("Glossary response is not a JSON object")

        partial: Dict[str, List[dict]] = {}
        for section in SECTIONS:
            items = data.get(section) or []
            partial[section] = [dict(item) for item in items if isinstance(item, dict)]
        for event in partial["events"]:
            event.setdefault("chunk_index", unit_index)
            event.setdefault("importance", "major")
        return partial


def _norm(value: Any) -> str:
    return str(value).strip().lower() if value else ""


def _merge_character(existing: dict, incoming: dict) -> None:
    for key, value in incoming.items():
        if value and not existing.get(key):
            existing[key] = value


def consolidate_glossary(partials: Sequence[Optional[Dict[str, Any]]]) -> Dict[str, Any]:
    """Merge per-unit extraction results into one glossary.

    Pure function of ``partials`` in unit order: characters are merged on
    name or Korean name, locations and terms keep their first occurrence,
    events are concatenated. Units that failed (``None``) are skipped.
    """
    characters: List[dict] = []
    locations: Dict[str, dict] = {}
    terms: Dict[str, dict] = {}
    events: List[dict] = []

    for partial in partials:
        if not partial:
            continue
        for char in partial.get("characters", []):
            name, korean = _norm(char.get("name")), _norm(char.get("korean_name"))
            match = next(
                (
                    c
                    for c in characters
                    if (name and _norm(c.get("name")) == name)
                    or (korean and _norm(c.get("korean_name")) == korean)
                ),
                None,
            )
            if match is None:
                characters.append(dict(char))
            else:
                _merge_character(match, char)
        for loc in partial.get("locations", []):
            key = _norm(loc.get("name"))
            if key and key not in locations:
                locations[key] = dict(loc)
        for term in partial.get("terms", []):
            key = _norm(term.get("original"))
            if key and key not in terms:
                terms[key] = dict(term)
        events.extend(dict(event) for event in partial.get("events", []))

    return {
        "characters": characters,
        "locations": list(locations.values()),
        "terms": list(terms.values()),
        "events": events,
    }
