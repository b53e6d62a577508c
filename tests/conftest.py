"""Shared fixtures: scripted text generators and an in-memory store."""

import asyncio
import json

import pytest

import chunkflow.persistence as persistence
from chunkflow.config import ChunkflowConfig, PipelineSettings
from chunkflow.persistence import InMemoryJobRepository
from chunkflow.store import TaskStore


class ScriptedGenerator:
    """Returns canned replies in order; the last reply repeats.

    A reply that is an exception instance is raised instead. ``reply`` may
    also be a callable receiving the prompt.
    """

    def __init__(self, *replies, reply=None):
        self.replies = list(replies)
        self.reply = reply
        self.prompts = []

    @property
    def calls(self) -> int:
        return len(self.prompts)

    async def generate(self, prompt: str) -> str:
        self.prompts.append(prompt)
        await asyncio.sleep(0)
        if self.reply is not None:
            value = self.reply(prompt)
        else:
            value = self.replies[min(len(self.prompts), len(self.replies)) - 1]
        if isinstance(value, Exception):
            raise value
        return value


def quality_json(score, major=(), minor=()):
    return json.dumps(
        {
            "overall_score": score,
            "passes": score >= 70,
            "major_issues": list(major),
            "minor_issues": list(minor),
            "specific_improvements": [],
        }
    )


@pytest.fixture
def scripted():
    return ScriptedGenerator


@pytest.fixture
def repository():
    return InMemoryJobRepository()


@pytest.fixture
def store(repository):
    return TaskStore(repository)


@pytest.fixture
def fast_settings():
    return PipelineSettings(post_process_delay=0)


@pytest.fixture
def config(fast_settings):
    return ChunkflowConfig(pipeline=fast_settings)


@pytest.fixture(autouse=True)
def reset_repository_singleton(monkeypatch):
    monkeypatch.setattr(persistence, "_repository_instance", None)
    monkeypatch.delenv("CHUNKFLOW_DATABASE_URL", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.delenv("CHUNKFLOW_CONFIG", raising=False)


@pytest.fixture
def quality_reply():
    return quality_json
