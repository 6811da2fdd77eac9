import asyncio
from collections import deque
from collections.abc import AsyncIterator, Iterable
from typing import Any

from nexus_resilience.core.logging import get_logger
from nexus_resilience.llm_providers.base_provider import BaseProvider, ProviderConfig, ProviderResponse

logger = get_logger(__name__)


class FakeProvider(BaseProvider):
    """
    A fake AI provider for local runs and tests.

    Answers deterministically (the reply echoes the last user message) and can
    be scripted to fail: every queued exception is raised by the next call, in
    order, before the provider goes back to answering normally.
    """

    def __init__(
        self,
        config: ProviderConfig,
        failures: Iterable[BaseException] = (),
        latency: float = 0.0,
        chars_per_chunk: int = 8,
    ):
        super().__init__(config)
        self.latency = latency
        self.chars_per_chunk = chars_per_chunk
        self.call_count = 0
        self._failures: deque[BaseException] = deque(failures)

    @classmethod
    def named(cls, name: str, **kwargs) -> "FakeProvider":
        config = ProviderConfig(name=name, api_key="fake", base_url="fake://", default_model=f"{name}-fake")
        return cls(config, **kwargs)

    def fail_next(self, *errors: BaseException) -> None:
        """Queue errors for the next calls."""
        self._failures.extend(errors)

    def _next_failure(self) -> BaseException | None:
        return self._failures.popleft() if self._failures else None

    async def _complete_internal(self, messages: list[dict[str, str]], model: str) -> ProviderResponse:
        self.call_count += 1
        if self.latency:
            await asyncio.sleep(self.latency)

        failure = self._next_failure()
        if failure is not None:
            raise failure

        return ProviderResponse(
            content=self._generate_response_content(messages),
            model=model,
            provider=self.name,
            finish_reason="stop",
        )

    async def _stream_internal(self, messages: list[dict[str, str]], model: str) -> AsyncIterator[str]:
        self.call_count += 1
        failure = self._next_failure()
        text = self._generate_response_content(messages)

        # A scripted failure interrupts the stream halfway through
        cut = len(text) // 2 if failure is not None else len(text)
        for i in range(0, cut, self.chars_per_chunk):
            if self.latency:
                await asyncio.sleep(self.latency)
            yield text[i : min(i + self.chars_per_chunk, cut)]

        if failure is not None:
            raise failure

    async def health_check(self) -> dict[str, Any]:
        return {"status": "healthy", "latency_ms": 0, "provider": self.name}

    def _generate_response_content(self, messages: list[dict[str, str]]) -> str:
        question = next(
            (m.get("content", "") for m in reversed(messages) if m.get("role") == "user"), ""
        )
        return (
            f"[{self.name}] Here is a considered answer to your question: {question.strip()} "
            "This response comes from the local fake provider."
        )
