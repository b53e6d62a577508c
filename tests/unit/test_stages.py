"""Tests for individual stages and their output parsing."""

import json

import pytest

from chunkflow.errors import StageOutputError
from chunkflow.stages import (
    GlossaryExtractionStage,
    MatchingStage,
    PublishStage,
    QualityStage,
    ReviewStage,
    consolidate_glossary,
    format_glossary,
    split_paragraphs,
)
from chunkflow.stages.parsing import parse_json_response


def test_parse_json_handles_fences_and_prose():
    assert parse_json_response('```json\n{"a": 1}\n```') == {"a": 1}
    assert parse_json_response('Sure! Here it is: {"a": 2} hope that helps') == {"a": 2}
    with pytest.raises(StageOutputError):
        parse_json_response("no json here")


@pytest.mark.asyncio
async def test_quality_stage_reads_fenced_json(scripted):
    body = {"overall_score": 72, "passes": True, "major_issues": ["x"], "minor_issues": ["y"]}
    stage = QualityStage(scripted(f"```json\n{json.dumps(body)}\n```"))

    report = await stage.check("text", "원문")

    assert report.overall_score == 72
    assert report.all_issues == ["x", "y"]


def test_split_paragraphs_falls_back_to_single_newlines():
    assert split_paragraphs("a\n\nb\n\n\nc") == ["a", "b", "c"]
    flat = "\n".join(["line " * 10] * 6)
    assert len(split_paragraphs(flat)) == 6
    assert split_paragraphs("short\ntext") == ["short\ntext"]


@pytest.mark.asyncio
async def test_matching_pads_and_clamps_model_output(scripted):
    reply = json.dumps(
        {
            "sourceParagraphs": ["하나"],
            "unmatchedSource": [
                {"text": "남은 부분", "beforeTargetIndex": 9},
                {"text": ""},
            ],
        }
    )
    stage = MatchingStage(scripted(reply))

    result = await stage.match("하나 둘", "One.\n\nTwo.")

    assert result.source_paragraphs == ["하나", ""]
    assert len(result.unmatched_source) == 1
    assert result.unmatched_source[0].before_target_index == 2


@pytest.mark.asyncio
async def test_matching_rejects_malformed_output(scripted):
    stage = MatchingStage(scripted('{"paragraphs": []}'))
    with pytest.raises(StageOutputError):
        await stage.match("하나", "One.")


@pytest.mark.asyncio
async def test_review_requires_at_least_one_issue(scripted):
    with pytest.raises(StageOutputError):
        await ReviewStage(scripted('{"issues": []}')).review("원문", "text")

    reply = json.dumps(
        {
            "issues": [
                {
                    "category": "accuracy",
                    "subcategory": "omission",
                    "severity": "high",
                    "message": "Second sentence missing",
                    "suggestion": "Translate it",
                }
            ]
        }
    )
    generator = scripted(reply)
    issues = await ReviewStage(generator).review("원문", "text")
    assert issues[0].severity == "high"
    assert "원문" in generator.prompts[0]


@pytest.mark.asyncio
async def test_glossary_extraction_tags_events_with_unit(scripted):
    reply = json.dumps(
        {
            "characters": [{"name": "Minho", "korean_name": "민호"}],
            "events": [{"name": "Duel", "description": "Minho fights"}],
            "terms": ["not a dict"],
        }
    )
    partial = await GlossaryExtractionStage(scripted(reply)).extract("민호가 싸웠다", 3)

    assert partial["characters"][0]["name"] == "Minho"
    assert partial["events"][0]["chunk_index"] == 3
    assert partial["terms"] == []
    assert partial["locations"] == []


def test_consolidate_glossary_merges_deterministically():
    partials = [
        {
            "characters": [{"name": "Minho", "korean_name": "민호"}],
            "locations": [{"name": "Seoul"}],
            "terms": [{"original": "검기", "translation": "sword aura"}],
            "events": [{"name": "Arrival"}],
        },
        None,
        {
            "characters": [{"name": "minho", "korean_name": "민호", "description": "A swordsman"}],
            "locations": [{"name": "seoul"}, {"name": "Busan"}],
            "terms": [{"original": "검기", "translation": "blade qi"}],
            "events": [{"name": "Duel"}],
        },
    ]

    glossary = consolidate_glossary(partials)

    assert len(glossary["characters"]) == 1
    assert glossary["characters"][0]["description"] == "A swordsman"
    assert [loc["name"] for loc in glossary["locations"]] == ["Seoul", "Busan"]
    assert glossary["terms"][0]["translation"] == "sword aura"
    assert [e["name"] for e in glossary["events"]] == ["Arrival", "Duel"]
    assert consolidate_glossary(partials) == glossary


def test_format_glossary_renders_known_sections():
    rendered = format_glossary(
        {
            "characters": [{"korean_name": "민호", "english_name": "Minho", "tone": "curt"}],
            "terms": [{"original": "검기", "translation": "sword aura"}],
        }
    )
    assert "민호 → Minho" in rendered
    assert "Tone: curt" in rendered
    assert "검기 → sword aura" in rendered
    assert format_glossary("plain notes ") == "plain notes"
    assert format_glossary(None) == ""


@pytest.mark.asyncio
async def test_publish_stage_prefers_custom_instruction(scripted):
    generator = scripted("formatted")
    default = PublishStage(generator, "ja")
    custom = PublishStage(generator, "ja", "Keep dialogue on its own line.")

    assert await custom.publish("Body text.") == "formatted"
    assert generator.prompts[0].startswith("Keep dialogue on its own line.")
    assert generator.prompts[0].endswith("Body text.")
    assert default.instruction != custom.instruction
