"""Completion clients for the supported model providers.

Each client exposes the same small surface: a one-shot ``generate`` and
a token-delta ``generate_stream``. Ollama is reached through its
OpenAI-compatible endpoint.
"""

import logging
from abc import ABC, abstractmethod
from typing import AsyncIterator, Optional

from anthropic import AsyncAnthropic
from openai import AsyncOpenAI

from ragchat.config import GenerationConfig, get_settings

logger = logging.getLogger(__name__)


class LLMClient(ABC):
    """Abstract base class for LLM clients."""

    model: str

    @abstractmethod
    async def generate(
        self,
        prompt: str,
        max_tokens: int = 1024,
        temperature: float = 0.3,
    ) -> str:
        """Generate a response."""
        pass

    @abstractmethod
    async def generate_stream(
        self,
        prompt: str,
        max_tokens: int = 1024,
        temperature: float = 0.3,
    ) -> AsyncIterator[str]:
        """Generate a streaming response."""
        pass

    async def close(self):
        """Release network resources."""
        pass


class OpenAIClient(LLMClient):
    """OpenAI API client."""

    def __init__(self, api_key: str, model: str = "gpt-4o-mini", base_url: Optional[str] = None):
        """Initialize OpenAI client."""
        self.client = AsyncOpenAI(api_key=api_key, base_url=base_url)
        self.model = model

    async def generate(
        self,
        prompt: str,
        max_tokens: int = 1024,
        temperature: float = 0.3,
    ) -> str:
        """Generate using OpenAI."""
        response = await self.client.chat.completions.create(
            model=self.model,
            messages=[{"role": "user", "content": prompt}],
            max_tokens=max_tokens,
            temperature=temperature,
        )
        return response.choices[0].message.content or ""

    async def generate_stream(
        self,
        prompt: str,
        max_tokens: int = 1024,
        temperature: float = 0.3,
    ) -> AsyncIterator[str]:
        """Stream generate using OpenAI."""
        stream = await self.client.chat.completions.create(
            model=self.model,
            messages=[{"role": "user", "content": prompt}],
            max_tokens=max_tokens,
            temperature=temperature,
            stream=True,
        )
        async for chunk in stream:
            if chunk.choices and chunk.choices[0].delta.content:
                yield chunk.choices[0].delta.content

    async def close(self):
        await self.client.close()


class AnthropicClient(LLMClient):
    """Anthropic API client."""

    def __init__(self, api_key: str, model: str = "claude-3-5-haiku-latest"):
        """Initialize Anthropic client."""
        self.client = AsyncAnthropic(api_key=api_key)
        self.model = model

    async def generate(
        self,
        prompt: str,
        max_tokens: int = 1024,
        temperature: float = 0.3,
    ) -> str:
        """Generate using Anthropic."""
        response = await self.client.messages.create(
            model=self.model,
            max_tokens=max_tokens,
            temperature=temperature,
            messages=[{"role": "user", "content": prompt}],
        )
        return response.content[0].text

    async def generate_stream(
        self,
        prompt: str,
        max_tokens: int = 1024,
        temperature: float = 0.3,
    ) -> AsyncIterator[str]:
        """Stream generate using Anthropic."""
        async with self.client.messages.stream(
            model=self.model,
            max_tokens=max_tokens,
            temperature=temperature,
            messages=[{"role": "user", "content": prompt}],
        ) as stream:
            async for text in stream.text_stream:
                yield text

    async def close(self):
        await self.client.close()


def create_llm_client(
    config: Optional[GenerationConfig] = None,
    model: Optional[str] = None,
    provider: Optional[str] = None,
) -> LLMClient:
    """Build a completion client for the configured provider."""
    config = config or get_settings().generation
    provider = provider or config.provider
    model = model or config.model

    if provider == "openai":
        if not config.openai_api_key:
            raise ValueError("OpenAI API key not configured")
        client = OpenAIClient(api_key=config.openai_api_key, model=model)
    elif provider == "anthropic":
        if not config.anthropic_api_key:
            raise ValueError("Anthropic API key not configured")
        client = AnthropicClient(api_key=config.anthropic_api_key, model=model)
    elif provider == "ollama":
        # Ollama ignores the key but the SDK requires one
        client = OpenAIClient(
            api_key="ollama",
            model=model,
            base_url=f"{config.ollama_base_url.rstrip('/')}/v1",
        )
    else:
        raise ValueError(f"Unknown LLM provider: {provider}")

    logger.info(f"Initialized {provider} client with model {model}")
    return client
