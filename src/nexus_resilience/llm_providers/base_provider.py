#!/usr/bin/env python3
"""
Base Provider Abstract Class

This module defines the abstract base class for all AI provider adapters.
Concrete implementations (OpenAI-compatible endpoints, the fake provider)
inherit from this class.

Architectural Decision: Abstract base class for consistent patterns
- Common interface for all providers
- Structured logging around every call
- Errors mapped to the internal exception hierarchy with messages the
  circuit breaker can classify

Resilience (circuit breaking, failover, retries) is deliberately NOT built in
here: adapters are plain async calls and the chat service wraps them.
"""

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any

from nexus_resilience.core.config.constants import Stage
from nexus_resilience.core.logging.logger import get_logger, log_stage

logger = get_logger(__name__)


@dataclass
class ProviderConfig:
    """
    Configuration for an AI provider.

    Attributes:
        name: Provider id (openai, anthropic, google, xai, moonshotai)
        api_key: API key for authentication
        base_url: OpenAI-compatible base URL
        default_model: Model used when the request does not name one
        timeout: Request timeout in seconds
    """

    name: str
    api_key: str
    base_url: str
    default_model: str
    timeout: float = 30.0


@dataclass
class ProviderResponse:
    """A complete (non-streamed) provider answer."""

    content: str
    model: str
    provider: str
    finish_reason: str | None = None
    usage: dict[str, int] = field(default_factory=dict)


class BaseProvider(ABC):
    """
    Abstract base class for AI providers.

    STAGE-5: Provider call

    Subclasses must implement:
    - _complete_internal(): one chat completion
    - _stream_internal(): streamed chat completion yielding text chunks
    - health_check(): provider health check
    """

    def __init__(self, config: ProviderConfig):
        self.config = config
        self.name = config.name

        logger.info(
            "Provider initialized",
            stage=Stage.PROVIDER_CALL.value,
            provider=config.name,
            default_model=config.default_model,
        )

    async def complete(self, messages: list[dict[str, str]], model: str | None = None) -> ProviderResponse:
        """
        Run one chat completion.

        Args:
            messages: Sanitized chat history (role/content dicts)
            model: Model to use (default from config)

        Raises:
            ProviderError: On provider errors
        """
        model = model or self.config.default_model
        log_stage(
            logger,
            Stage.PROVIDER_CALL,
            "Calling provider",
            level="debug",
            provider=self.name,
            model=model,
            message_count=len(messages),
        )

        try:
            response = await self._complete_internal(messages, model)
        except Exception as e:
            log_stage(
                logger,
                Stage.PROVIDER_CALL,
                "Provider call failed",
                level="warning",
                provider=self.name,
                model=model,
                error_type=type(e).__name__,
                error=str(e),
            )
            raise

        log_stage(
            logger,
            Stage.PROVIDER_CALL,
            "Provider call completed",
            provider=self.name,
            model=response.model,
            content_length=len(response.content),
        )
        return response

    async def stream(self, messages: list[dict[str, str]], model: str | None = None) -> AsyncIterator[str]:
        """
        Stream a chat completion as text chunks.

        Errors propagate unchanged; callers guard the stream with
        ``recoverable_stream``.
        """
        model = model or self.config.default_model
        chunk_count = 0

        async for chunk in self._stream_internal(messages, model):
            chunk_count += 1
            yield chunk

        log_stage(
            logger,
            Stage.PROVIDER_CALL,
            "Stream completed",
            provider=self.name,
            model=model,
            chunk_count=chunk_count,
        )

    @abstractmethod
    async def _complete_internal(self, messages: list[dict[str, str]], model: str) -> ProviderResponse:
        pass

    @abstractmethod
    def _stream_internal(self, messages: list[dict[str, str]], model: str) -> AsyncIterator[str]:
        pass

    @abstractmethod
    async def health_check(self) -> dict[str, Any]:
        """
        Check provider health.

        Returns:
            Dict with health status
        """
        pass
