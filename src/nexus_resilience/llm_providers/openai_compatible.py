#!/usr/bin/env python3
"""
OpenAI-Compatible Provider Implementation

One adapter for every upstream provider: OpenAI, Gemini, Anthropic, xAI and
Moonshot all expose OpenAI-compatible chat completion endpoints, so only the
API key, base URL and default model differ.

Architectural Decision: Use the official openai SDK (AsyncOpenAI)
- Connection pooling and streaming handled by the SDK
- SDK retries disabled (max_retries=0): retries belong to the failover layer
- SDK exceptions are mapped to the internal hierarchy with messages that keep
  the status information the circuit breaker classifies on
"""

import time
from collections.abc import AsyncIterator
from typing import Any

from openai import (
    APIConnectionError,
    APIError,
    APIStatusError,
    APITimeoutError,
    AsyncOpenAI,
    AuthenticationError,
    PermissionDeniedError,
)

from nexus_resilience.core.exceptions import (
    ProviderAPIError,
    ProviderAuthenticationError,
    ProviderError,
    ProviderNotAvailableError,
    ProviderTimeoutError,
)
from nexus_resilience.core.logging import get_logger
from nexus_resilience.llm_providers.base_provider import BaseProvider, ProviderConfig, ProviderResponse

logger = get_logger(__name__)


class OpenAICompatibleProvider(BaseProvider):
    """
    Chat completions against an OpenAI-compatible endpoint.

    STAGE-5.OPENAI: OpenAI-compatible provider operations
    """

    def __init__(self, config: ProviderConfig, client: AsyncOpenAI | None = None):
        super().__init__(config)

        self.client = client or AsyncOpenAI(
            api_key=config.api_key,
            base_url=config.base_url,
            timeout=config.timeout,
            max_retries=0,  # retries are handled by the failover layer
        )

    async def _complete_internal(self, messages: list[dict[str, str]], model: str) -> ProviderResponse:
        try:
            completion = await self.client.chat.completions.create(model=model, messages=messages)
        except APIError as e:
            raise self._map_error(e) from e

        choice = completion.choices[0] if completion.choices else None
        content = (choice.message.content if choice else None) or ""
        if not content:
            raise ProviderAPIError(
                f"{self.name} returned an incomplete response",
                details={"provider": self.name, "model": model},
            )

        usage = {}
        if completion.usage:
            usage = {
                "prompt_tokens": completion.usage.prompt_tokens,
                "completion_tokens": completion.usage.completion_tokens,
            }

        return ProviderResponse(
            content=content,
            model=completion.model or model,
            provider=self.name,
            finish_reason=choice.finish_reason if choice else None,
            usage=usage,
        )

    async def _stream_internal(self, messages: list[dict[str, str]], model: str) -> AsyncIterator[str]:
        try:
            stream_response = await self.client.chat.completions.create(
                model=model, messages=messages, stream=True
            )
            async for chunk in stream_response:
                if chunk.choices and chunk.choices[0].delta.content:
                    yield chunk.choices[0].delta.content
        except APIError as e:
            raise self._map_error(e) from e

    def _map_error(self, error: APIError) -> ProviderError:
        """
        Translate an SDK exception.

        Messages keep the HTTP status so string classification still works
        (e.g. "openai API error 503: ...").
        """
        details: dict[str, Any] = {"provider": self.name}

        if isinstance(error, (AuthenticationError, PermissionDeniedError)):
            logger.error("Provider authentication failed", provider=self.name, error=str(error))
            return ProviderAuthenticationError(f"Invalid API key for {self.name}", details=details)

        if isinstance(error, APITimeoutError):
            return ProviderTimeoutError(f"{self.name} request timeout", details=details)

        if isinstance(error, APIConnectionError):
            return ProviderNotAvailableError(
                f"{self.name} network connection failed: {error.message}", details=details
            )

        if isinstance(error, APIStatusError):
            details["status_code"] = error.status_code
            if error.status_code == 404:
                return ProviderAPIError(f"{self.name} model not found: {error.message}", details=details)
            return ProviderAPIError(
                f"{self.name} API error {error.status_code}: {error.message}", details=details
            )

        return ProviderAPIError(f"{self.name} API error: {error.message}", details=details)

    async def health_check(self) -> dict[str, Any]:
        """Minimal authenticated call (list models) to verify the endpoint."""
        try:
            start_time = time.perf_counter()
            await self.client.models.list()
            duration_ms = (time.perf_counter() - start_time) * 1000
            return {"status": "healthy", "latency_ms": round(duration_ms, 2), "provider": self.name}
        except APIError as e:
            return {"status": "unhealthy", "error": str(self._map_error(e)), "provider": self.name}
