"""LLM client interface used for structured extraction, and the provider factory."""

from __future__ import annotations

import abc

from imucalc.core.config import LLMConfig


class LLMClient(abc.ABC):
    """Base class for chat-completion backends.

    Extraction prompts ask for a single JSON object; ``json_output`` lets
    each provider switch on its native JSON mode.
    """

    def __init__(self, config: LLMConfig) -> None:
        self.config = config

    @property
    def name(self) -> str:
        return f"{self.config.provider}:{self.config.model}"

    @abc.abstractmethod
    async def chat(
        self,
        messages: list[dict],
        *,
        temperature: float = 0.0,
        json_output: bool = False,
    ) -> str:
        """Return the assistant reply to ``messages``."""

    async def generate(
        self,
        prompt: str,
        *,
        system_prompt: str | None = None,
        temperature: float = 0.0,
        json_output: bool = False,
    ) -> str:
        """Single-turn completion built on :meth:`chat`."""
        messages: list[dict] = []
        if system_prompt is not None:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})
        return await self.chat(messages, temperature=temperature, json_output=json_output)

    @abc.abstractmethod
    async def is_available(self) -> bool:
        """Return True if the provider is reachable."""

    async def close(self) -> None:
        """Release HTTP connections; providers without any keep the no-op."""


def provider_registry() -> dict[str, type[LLMClient]]:
    from imucalc.llm.providers.ollama import OllamaClient
    from imucalc.llm.providers.openai_compat import OpenAICompatClient

    return {
        "ollama": OllamaClient,
        "openai": OpenAICompatClient,
        "vllm": OpenAICompatClient,
    }


def create_llm_client(config: LLMConfig) -> LLMClient:
    """Instantiate the provider named by ``config.provider``."""
    registry = provider_registry()
    provider = config.provider.lower()
    if provider not in registry:
        raise ValueError(
            f"Unknown LLM provider {config.provider!r}. "
            f"Available: {', '.join(sorted(registry))}"
        )
    return registry[provider](config)
