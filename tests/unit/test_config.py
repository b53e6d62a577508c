"""Tests for configuration loading."""

import pytest
from pydantic import ValidationError

from chunkflow.config import LLMConfig, load_config
from chunkflow.persistence import InMemoryJobRepository, SQLiteJobRepository, get_repository


def test_load_config_from_env(tmp_path, monkeypatch):
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        """
log_level: DEBUG
pipeline:
  quality_threshold: 80
  max_retries: 1
batch:
  unit_size: 500
stages:
  translation:
    provider: openai
    model: gpt-4o
  quality:
    provider: gemini
    model: gemini-2.0-flash
    temperature: 0.1
"""
    )
    monkeypatch.setenv("CHUNKFLOW_CONFIG", str(config_path))

    config = load_config()
    assert config.log_level == "DEBUG"
    assert config.pipeline.quality_threshold == 80
    assert config.pipeline.max_retries == 1
    assert config.pipeline.skip_proofread_score == 90
    assert config.batch.unit_size == 500
    assert config.stages["translation"].temperature == 0.3
    assert config.stages["quality"].provider == "gemini"


def test_missing_config_file_gives_defaults(tmp_path):
    config = load_config(str(tmp_path / "absent.yaml"))
    assert config.database_url is None
    assert config.pipeline.quality_threshold == 70
    assert config.pipeline.previous_context_chars == 1800
    assert config.stages == {}


def test_database_url_env_overrides_file(tmp_path, monkeypatch):
    config_path = tmp_path / "config.yaml"
    config_path.write_text("database_url: sqlite://from-file.db\n")
    monkeypatch.setenv("CHUNKFLOW_DATABASE_URL", "sqlite://from-env.db")

    assert load_config(str(config_path)).database_url == "sqlite://from-env.db"


def test_llm_config_validates_provider_and_temperature():
    with pytest.raises(ValidationError):
        LLMConfig(provider="mystery", model="x")
    with pytest.raises(ValidationError):
        LLMConfig(provider="openai", model="x", temperature=3)


def test_get_repository_uses_config(tmp_path, monkeypatch):
    config_path = tmp_path / "config.yaml"
    config_path.write_text(f"database_url: sqlite://{tmp_path / 'jobs.db'}\n")
    monkeypatch.setenv("CHUNKFLOW_CONFIG", str(config_path))

    repo = get_repository()
    assert isinstance(repo, SQLiteJobRepository)
    assert get_repository() is repo
    repo.close()


def test_get_repository_defaults_to_memory(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    assert isinstance(get_repository(), InMemoryJobRepository)
    with pytest.raises(ValueError):
        get_repository("postgresql://localhost/db")
