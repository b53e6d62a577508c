"""Pipeline stages, each wrapping one text-generation capability."""

from .glossary import GlossaryExtractionStage, consolidate_glossary
from .matching import MatchingStage, split_paragraphs
from .quality import QualityReport, QualityStage
from .review import ReviewStage
from .text import (
    EnhancementStage,
    LayoutStage,
    ProofreadStage,
    PublishStage,
    TranslationStage,
    format_glossary,
)

__all__ = [
    "EnhancementStage",
    "GlossaryExtractionStage",
    "LayoutStage",
    "MatchingStage",
    "ProofreadStage",
    "PublishStage",
    "QualityReport",
    "QualityStage",
    "ReviewStage",
    "TranslationStage",
    "consolidate_glossary",
    "format_glossary",
    "split_paragraphs",
]
