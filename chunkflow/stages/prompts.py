"""Default instructions for each stage, keyed by target language."""

from typing import Optional

TRANSLATION = {
    "en": (
        "You are a literary translator. Translate Korean prose into natural, "
        "fluent English. Keep names and terms consistent with the glossary and "
        "preserve paragraph breaks. Return only the translation."
    ),
    "ja": (
        "You are a literary translator. Translate Korean prose into natural "
        "Japanese. Keep names and terms consistent with the glossary and "
        "preserve paragraph breaks. Return only the translation."
    ),
}

ENHANCEMENT = {
    "en": (
        "You are an English editor. Improve the fluency and tone of the "
        "translation without changing its meaning. Return only the revised text."
    ),
    "ja": (
        "You are a Japanese editor. Improve the fluency and tone of the "
        "translation without changing its meaning. Return only the revised text."
    ),
}

QUALITY = {
    "en": (
        "You are a translation quality reviewer. Compare the translation with "
        "the Korean original and answer with JSON only: "
        '{"overall_score": 0-100, "passes": bool, "major_issues": [str], '
        '"minor_issues": [str], "specific_improvements": [str]}'
    ),
    "ja": (
        "You are a Korean to Japanese translation quality reviewer. Answer with "
        'JSON only: {"overall_score": 0-100, "passes": bool, "major_issues": '
        '[str], "minor_issues": [str], "specific_improvements": [str]}'
    ),
}

PROOFREADER = {
    "en": (
        "You are a proofreader. Fix grammar, spelling and punctuation in the "
        "English text. Do not rewrite style. Return only the corrected text."
    ),
    "ja": (
        "You are a proofreader. Fix grammar and typographical errors in the "
        "Japanese text. Do not rewrite style. Return only the corrected text."
    ),
}

LAYOUT = {
    "en": (
        "Format the text for reading: one blank line between paragraphs, "
        "dialogue on its own line. Do not change the wording. Return only the text."
    ),
    "ja": (
        "Format the Japanese text for reading: one blank line between "
        "paragraphs, dialogue on its own line. Do not change the wording."
    ),
}

PUBLISH = {
    "en": (
        "You are a webnovel publishing specialist. The target platform does not "
        "support Markdown. Replace Markdown styling with plain text conventions: "
        "inner thoughts in single quotes, written documents in [brackets], book "
        "titles in 『』, and flashback narration as plain text. Put one blank line "
        "between every paragraph and every line of dialogue. Do not change the "
        "wording. Return only the formatted text."
    ),
    "ja": (
        "You are a web novel publishing specialist. Remove Markdown styling and "
        "use plain Japanese conventions: inner thoughts in （）, quotations in 「」, "
        "book titles in 『』. Put one blank line between paragraphs. Do not change "
        "the wording. Return only the formatted text."
    ),
}

MATCHING = (
    "You align a Korean source text to the paragraph layout of its translation. "
    "Do not translate. Split the Korean text into exactly {count} paragraphs, in "
    "order, where item i corresponds to [T-i]. Korean text with no counterpart "
    "goes into unmatchedSource with beforeTargetIndex between 0 and {count}. "
    "Every Korean character must appear exactly once. Answer with JSON only: "
    '{{"sourceParagraphs": [str], "unmatchedSource": '
    '[{{"text": str, "beforeTargetIndex": int}}]}}'
)

REVIEW = (
    "You review an English translation against its Korean source. List concrete "
    "problems (mistranslation, omission, awkward phrasing, consistency). Answer "
    'with JSON only: {"issues": [{"category": str, "subcategory": str, '
    '"severity": "high"|"medium"|"low", "message": str, "text": str, '
    '"suggestion": str}]}\n\nKOREAN:\n{source}\n\nENGLISH:\n{target}'
)

GLOSSARY = (
    "Extract story entities from this Korean text segment for a translation "
    "glossary in {language}. Answer with JSON only: "
    '{{"characters": [{{"name": str, "korean_name": str, "description": str}}], '
    '"locations": [{{"name": str, "korean_name": str, "description": str}}], '
    '"terms": [{{"original": str, "translation": str, "context": str}}], '
    '"events": [{{"name": str, "description": str, "importance": "major"|"minor"}}]}}'
)


def instruction_for(
    defaults: dict[str, str], language: str, custom: Optional[str] = None
) -> str:
    """Return the custom instruction, or the default for ``language``."""
    return custom or defaults.get(language) or defaults["en"]
