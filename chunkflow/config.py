from __future__ import annotations

import os
from typing import Dict, Literal, Optional

import yaml
from pydantic import BaseModel, Field

from .constants import (
    DEFAULT_BATCH_UNIT_SIZE,
    DEFAULT_MAX_RETRIES,
    DEFAULT_POST_PROCESS_ATTEMPTS,
    DEFAULT_POST_PROCESS_DELAY,
    DEFAULT_PREVIOUS_CONTEXT_CHARS,
    DEFAULT_QUALITY_THRESHOLD,
    DEFAULT_SKIP_PROOFREAD_SCORE,
    PARSE_FAILURE_SCORE,
)


class LLMConfig(BaseModel):
    """Provider and model used by one pipeline stage."""

    provider: Literal["openai", "anthropic", "gemini"]
    model: str
    temperature: float = Field(default=0.3, ge=0, le=2)
    api_key: Optional[str] = None


class PipelineSettings(BaseModel):
    """Routing and retry policy for the chunk transformation pipeline."""

    quality_threshold: float = DEFAULT_QUALITY_THRESHOLD
    skip_proofread_score: float = DEFAULT_SKIP_PROOFREAD_SCORE
    max_retries: int = DEFAULT_MAX_RETRIES
    post_process_attempts: int = DEFAULT_POST_PROCESS_ATTEMPTS
    post_process_delay: float = DEFAULT_POST_PROCESS_DELAY
    previous_context_chars: int = DEFAULT_PREVIOUS_CONTEXT_CHARS
    parse_failure_score: float = PARSE_FAILURE_SCORE


class BatchSettings(BaseModel):
    """Settings for resumable batch extraction."""

    unit_size: int = DEFAULT_BATCH_UNIT_SIZE


class ChunkflowConfig(BaseModel):
    """Top-level configuration model."""

    database_url: Optional[str] = None
    log_level: str = "INFO"
    pipeline: PipelineSettings = PipelineSettings()
    batch: BatchSettings = BatchSettings()
    stages: Dict[str, LLMConfig] = Field(default_factory=dict)


def load_config(path: Optional[str] = None) -> ChunkflowConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to CHUNKFLOW_CONFIG env
            variable or 'chunkflow.yaml' in the current directory.
    """

    config_path = path or os.getenv("CHUNKFLOW_CONFIG", "chunkflow.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = ChunkflowConfig(**data)
    else:
        config = ChunkflowConfig()

    env_db_url = os.getenv("CHUNKFLOW_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_db_url:
        config.database_url = env_db_url
    return config
