"""
Nexus - LLM Service

Language model integration used to write the public alert that goes out
when the community verifies an incident.

Supports LLM providers:
- OpenAI GPT-4 (default)
- Anthropic Claude
- Mock (deterministic text for development and tests)
"""

from __future__ import annotations

import asyncio
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any

import httpx
import structlog

logger = structlog.get_logger(__name__)


class LLMProvider(str, Enum):
    """Supported LLM providers."""
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    MOCK = "mock"


@dataclass
class LLMConfig:
    """Configuration for LLM service."""
    provider: LLMProvider = LLMProvider.OPENAI
    model: str = "gpt-4"
    api_key: str | None = None
    api_base: str | None = None
    max_tokens: int = 400
    temperature: float = 0.7
    timeout_seconds: float = 60.0
    max_retries: int = 3
    retry_base_delay: float = 1.0


@dataclass
class LLMMessage:
    """A message in a conversation."""
    role: str  # "system", "user", "assistant"
    content: str


@dataclass
class LLMResponse:
    """Response from LLM."""
    content: str
    model: str
    tokens_used: int = 0
    finish_reason: str = "stop"
    latency_ms: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "content": self.content,
            "model": self.model,
            "tokens_used": self.tokens_used,
            "finish_reason": self.finish_reason,
            "latency_ms": self.latency_ms,
        }


class LLMConfigurationError(Exception):
    """Raised when LLM is not properly configured."""
    pass


RETRYABLE_ERRORS = (httpx.HTTPError, KeyError, ValueError)


class LLMProviderBase(ABC):
    """Base class for LLM providers."""

    @abstractmethod
    async def complete(
        self,
        messages: list[LLMMessage],
        max_tokens: int | None = None,
        temperature: float | None = None,
    ) -> LLMResponse:
        """Generate a completion."""
        pass

    async def close(self) -> None:
        return None


class _HTTPProvider(LLMProviderBase):
    """Shared HTTP client handling for hosted providers."""

    def __init__(
        self,
        api_key: str,
        model: str,
        api_base: str,
        timeout: float = 60.0,
        http_client: httpx.AsyncClient | None = None,
    ):
        self._api_key = api_key
        self._model = model
        self._api_base = api_base.rstrip("/")
        self._timeout = timeout
        # One client per provider, created on first use
        self._http_client = http_client

    def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._timeout)
        return self._http_client

    async def close(self) -> None:
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None


class AnthropicProvider(_HTTPProvider):
    """Anthropic Claude provider (Messages API)."""

    def __init__(
        self,
        api_key: str,
        model: str = "claude-sonnet-4-20250514",
        api_base: str | None = None,
        timeout: float = 60.0,
        http_client: httpx.AsyncClient | None = None,
    ):
        super().__init__(
            api_key, model, api_base or "https://api.anthropic.com", timeout, http_client
        )

    async def complete(
        self,
        messages: list[LLMMessage],
        max_tokens: int | None = None,
        temperature: float | None = None,
    ) -> LLMResponse:
        """Generate completion via Anthropic API."""
        start_time = time.monotonic()

        url = f"{self._api_base}/v1/messages"
        headers = {
            "x-api-key": self._api_key,
            "anthropic-version": "2023-06-01",
            "Content-Type": "application/json",
        }

        system_message = None
        api_messages = []
        for msg in messages:
            if msg.role == "system":
                system_message = msg.content
            else:
                api_messages.append({"role": msg.role, "content": msg.content})

        payload: dict[str, Any] = {
            "model": self._model,
            "messages": api_messages,
            "max_tokens": max_tokens or 400,
        }
        if system_message:
            payload["system"] = system_message
        if temperature is not None:
            payload["temperature"] = temperature

        response = await self._get_client().post(url, headers=headers, json=payload)
        response.raise_for_status()
        data = response.json()

        content = "".join(
            block.get("text", "")
            for block in data.get("content", [])
            if block.get("type") == "text"
        )
        usage = data.get("usage", {})

        return LLMResponse(
            content=content,
            model=self._model,
            tokens_used=usage.get("input_tokens", 0) + usage.get("output_tokens", 0),
            finish_reason=data.get("stop_reason", "stop"),
            latency_ms=(time.monotonic() - start_time) * 1000,
        )


class OpenAIProvider(_HTTPProvider):
    """OpenAI chat completions provider."""

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4",
        api_base: str | None = None,
        timeout: float = 60.0,
        http_client: httpx.AsyncClient | None = None,
    ):
        super().__init__(
            api_key, model, api_base or "https://api.openai.com/v1", timeout, http_client
        )

    async def complete(
        self,
        messages: list[LLMMessage],
        max_tokens: int | None = None,
        temperature: float | None = None,
    ) -> LLMResponse:
        """Generate completion via OpenAI API."""
        start_time = time.monotonic()

        url = f"{self._api_base}/chat/completions"
        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }
        payload: dict[str, Any] = {
            "model": self._model,
            "messages": [{"role": msg.role, "content": msg.content} for msg in messages],
            "max_tokens": max_tokens or 400,
        }
        if temperature is not None:
            payload["temperature"] = temperature

        response = await self._get_client().post(url, headers=headers, json=payload)
        response.raise_for_status()
        data = response.json()

        choice = data["choices"][0]

        return LLMResponse(
            content=choice.get("message", {}).get("content", "") or "",
            model=self._model,
            tokens_used=data.get("usage", {}).get("total_tokens", 0),
            finish_reason=choice.get("finish_reason", "stop"),
            latency_ms=(time.monotonic() - start_time) * 1000,
        )


class MockLLMProvider(LLMProviderBase):
    """
    Mock LLM provider for development and tests.

    Echoes the address and details lines of the prompt into a fixed alert
    template so output is deterministic.
    """

    def __init__(self) -> None:
        logger.warning(
            "mock_llm_provider_initialized",
            hint="Set LLM_PROVIDER and LLM_API_KEY for generated alert text.",
        )

    async def complete(
        self,
        messages: list[LLMMessage],
        max_tokens: int | None = None,
        temperature: float | None = None,
    ) -> LLMResponse:
        last_user_msg = next(
            (msg.content for msg in reversed(messages) if msg.role == "user"),
            "",
        )
        fields = {}
        for line in last_user_msg.splitlines():
            key, sep, value = line.partition(":")
            if sep and key.strip() in ("Suspicious Address", "Details"):
                fields[key.strip()] = value.strip()

        content = (
            f"Community alert: {fields.get('Suspicious Address', 'an address')} has been "
            f"flagged by ETC watchers. {fields.get('Details', '')} "
            "#EthereumClassic #ETC Stay safe and DYOR."
        )
        return LLMResponse(content=" ".join(content.split()), model="mock")


class LLMService:
    """
    Main LLM service for Nexus.

    Usage:
        service = LLMService(LLMConfig(
            provider=LLMProvider.OPENAI,
            api_key="sk-..."
        ))
        text = await service.incident_alert("0xabc...", "Fake airdrop site")
    """

    def __init__(
        self,
        config: LLMConfig | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        self._config = config or LLMConfig()
        self._provider = self._create_provider(http_client)

        logger.info(
            "llm_service_initialized",
            provider=LLMProvider(self._config.provider).value,
            model=self._config.model,
        )

    def _create_provider(self, http_client: httpx.AsyncClient | None) -> LLMProviderBase:
        """Create the appropriate provider."""
        provider = LLMProvider(self._config.provider)

        if provider == LLMProvider.MOCK:
            return MockLLMProvider()

        if not self._config.api_key:
            raise LLMConfigurationError(f"API key required for {provider.value} provider")

        if provider == LLMProvider.ANTHROPIC:
            return AnthropicProvider(
                api_key=self._config.api_key,
                model=self._config.model,
                api_base=self._config.api_base,
                timeout=self._config.timeout_seconds,
                http_client=http_client,
            )

        return OpenAIProvider(
            api_key=self._config.api_key,
            model=self._config.model,
            api_base=self._config.api_base,
            timeout=self._config.timeout_seconds,
            http_client=http_client,
        )

    @property
    def provider(self) -> LLMProvider:
        return LLMProvider(self._config.provider)

    async def complete(
        self,
        messages: list[LLMMessage],
        max_tokens: int | None = None,
        temperature: float | None = None,
    ) -> LLMResponse:
        """
        Generate a completion, retrying with exponential backoff.

        Args:
            messages: Conversation messages
            max_tokens: Maximum tokens to generate
            temperature: Sampling temperature

        Returns:
            LLMResponse with generated content
        """
        max_tokens = max_tokens or self._config.max_tokens
        temperature = temperature if temperature is not None else self._config.temperature
        attempts = max(1, self._config.max_retries)

        for attempt in range(attempts):
            try:
                response = await self._provider.complete(
                    messages=messages,
                    max_tokens=max_tokens,
                    temperature=temperature,
                )
                logger.debug(
                    "llm_completion",
                    model=response.model,
                    tokens=response.tokens_used,
                    latency_ms=response.latency_ms,
                )
                return response

            except RETRYABLE_ERRORS as e:
                if attempt == attempts - 1:
                    raise
                logger.warning("llm_retry", attempt=attempt + 1, error=str(e))
                await asyncio.sleep(self._config.retry_base_delay * (2 ** attempt))

        raise RuntimeError("LLM completion failed after retries")

    async def incident_alert(self, suspicious_address: str, details: str) -> str:
        """
        Write a short public alert for a community-verified incident.

        Returns:
            Alert text (not yet truncated for any particular platform)
        """
        user_prompt = (
            "This incident was flagged by the ETC Community.\n"
            f"Suspicious Address: {suspicious_address}\n"
            f"Details: {details}\n\n"
            "Write a short 80-120 word alert about the potential scam/suspicious "
            "activity on Ethereum Classic.\n"
            "Mention #EthereumClassic and #ETC so that the community is aware.\n"
            "End with a caution to DYOR."
        )
        messages = [
            LLMMessage(
                role="system",
                content="You write concise, factual security alerts for the Ethereum Classic community.",
            ),
            LLMMessage(role="user", content=user_prompt),
        ]

        response = await self.complete(messages)
        return response.content.strip()

    async def close(self) -> None:
        """Release the provider's HTTP client."""
        await self._provider.close()
        logger.info("llm_service_closed")


__all__ = [
    "LLMProvider",
    "LLMConfig",
    "LLMConfigurationError",
    "LLMMessage",
    "LLMResponse",
    "LLMService",
    "MockLLMProvider",
    "OpenAIProvider",
    "AnthropicProvider",
]
