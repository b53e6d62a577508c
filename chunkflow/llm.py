"""Text-generation capability consumed by pipeline stages."""

from __future__ import annotations

import logging
from typing import Dict, Mapping, Protocol

from pydantic_ai import Agent
from pydantic_ai.models import Model

from .config import LLMConfig

logger = logging.getLogger(__name__)

# pydantic-ai model prefixes per provider.
_PROVIDERS = {
    "openai": "openai",
    "anthropic": "anthropic",
    "gemini": "google-gla",
}


def _model_for(config: LLMConfig) -> Model | str:
    """Resolve the pydantic-ai model for ``config``.

    Without an explicit key the provider reads its usual environment
    variable. With one, the key goes straight to the provider client.
    """
    if not config.api_key:
        return f"{_PROVIDERS[config.provider]}:{config.model}"

    match config.provider:
        case "openai":
            from pydantic_ai.models.openai import OpenAIChatModel
            from pydantic_ai.providers.openai import OpenAIProvider

            return OpenAIChatModel(
                config.model, provider=OpenAIProvider(api_key=config.api_key)
            )
        case "anthropic":
            from pydantic_ai.models.anthropic import AnthropicModel
            from pydantic_ai.providers.anthropic import AnthropicProvider

            return AnthropicModel(
                config.model, provider=AnthropicProvider(api_key=config.api_key)
            )
        case "gemini":
            from pydantic_ai.models.google import GoogleModel
            from pydantic_ai.providers.google import GoogleProvider

            return GoogleModel(config.model, provider=GoogleProvider(api_key=config.api_key))
        case _:
            raise ValueError(f"Unsupported provider: {config.provider}")


class TextGenerator(Protocol):
    """Anything that turns a prompt into text."""

    async def generate(self, prompt: str) -> str:
        """Return generated text for ``prompt``; may raise."""


class AgentTextGenerator:
    """Text generator backed by a pydantic-ai ``Agent``."""

    def __init__(self, agent: Agent) -> None:
        self.agent = agent

    @classmethod
    def from_config(cls, config: LLMConfig) -> "AgentTextGenerator":
        agent = Agent(
            _model_for(config),
            output_type=str,
            model_settings={"temperature": config.temperature},
        )
        return cls(agent)

    async def generate(self, prompt: str) -> str:
        result = await self.agent.run(prompt)
        return str(result.output).strip()


def build_generators(configs: Mapping[str, LLMConfig]) -> Dict[str, TextGenerator]:
    """Create one generator per configured stage.

    Stages whose generator cannot be created are left out, so the pipeline
    degrades them to pass-through instead of failing.
    """
    generators: Dict[str, TextGenerator] = {}
    for stage, config in configs.items():
        try:
            generators[stage] = AgentTextGenerator.from_config(config)
        except Exception as exc:
            logger.error(f"Failed to create {stage} generator: {exc}")
    return generators
