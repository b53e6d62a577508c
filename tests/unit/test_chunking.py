"""Tests for document segmentation."""

import pytest

from chunkflow.chunking import build_job, create_chunks, split_units


def test_lines_are_packed_up_to_chunk_size():
    text = "\n".join(["aaaa", "bbbb", "cccc", "dddd"])
    chunks = create_chunks(text, chunk_size=9)

    assert [c.text for c in chunks] == ["aaaa\nbbbb", "cccc\ndddd"]
    assert [c.id for c in chunks] == ["chunk_0", "chunk_1"]
    assert all(c.metadata.total_chunks == 2 for c in chunks)
    assert [c.metadata.chunk_index for c in chunks] == [0, 1]


def test_overlap_repeats_trailing_lines():
    text = "\n".join(["l1", "l2", "l3", "l4", "l5"])
    chunks = create_chunks(text, chunk_size=5, overlap=100)

    assert chunks[0].text == "l1\nl2"
    assert chunks[1].text.startswith("l2\n")


def test_long_line_becomes_its_own_chunk():
    chunks = create_chunks("short\n" + "x" * 50 + "\nend", chunk_size=10)
    assert [c.text for c in chunks] == ["short", "x" * 50, "end"]


def test_empty_text_has_no_chunks():
    assert create_chunks("   \n") == []
    with pytest.raises(ValueError):
        create_chunks("text", chunk_size=0)


def test_split_units_slices_text():
    assert split_units("abcdefg", 3) == ["abc", "def", "g"]
    assert split_units("", 3) == []


def test_build_job_keeps_source_and_options():
    record = build_job("Chapter 1", "하나\n둘", chunk_size=100, language="ja", max_retries=1)
    assert record.source_text == "하나\n둘"
    assert record.language == "ja"
    assert record.max_retries == 1
    assert len(record.chunks) == 1
