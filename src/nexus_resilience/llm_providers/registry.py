"""
Provider Registry

Holds one adapter per provider id and builds them from settings.

STAGE-4: Provider selection

Usage:
    registry = ProviderRegistry.from_settings()
    provider = registry.get("openai")
    response = await provider.complete(messages)
"""

from nexus_resilience.core.config.constants import KNOWN_PROVIDERS, AIProvider
from nexus_resilience.core.config.settings import Settings, get_settings
from nexus_resilience.core.exceptions import ProviderNotConfiguredError
from nexus_resilience.core.logging import get_logger
from nexus_resilience.llm_providers.base_provider import BaseProvider, ProviderConfig
from nexus_resilience.llm_providers.fake_provider import FakeProvider
from nexus_resilience.llm_providers.openai_compatible import OpenAICompatibleProvider

logger = get_logger(__name__)

# provider id -> settings attribute prefix
_SETTINGS_PREFIX = {
    AIProvider.OPENAI.value: "OPENAI",
    AIProvider.ANTHROPIC.value: "ANTHROPIC",
    AIProvider.GOOGLE.value: "GOOGLE",
    AIProvider.XAI.value: "XAI",
    AIProvider.MOONSHOTAI.value: "MOONSHOT",
}


def build_provider_config(name: str, settings: Settings | None = None) -> ProviderConfig | None:
    """Config for ``name`` from settings, or None when it has no API key."""
    settings = settings or get_settings()
    prefix = _SETTINGS_PREFIX[name]
    api_key = getattr(settings.llm, f"{prefix}_API_KEY")
    if not api_key:
        return None
    return ProviderConfig(
        name=name,
        api_key=api_key,
        base_url=getattr(settings.llm, f"{prefix}_BASE_URL"),
        default_model=getattr(settings.llm, f"{prefix}_MODEL"),
        timeout=settings.llm.PROVIDER_TIMEOUT,
    )


class ProviderRegistry:
    """Provider id -> adapter."""

    def __init__(self, providers: dict[str, BaseProvider] | None = None):
        self._providers: dict[str, BaseProvider] = dict(providers or {})

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "ProviderRegistry":
        """
        Register every provider with an API key.

        With ``USE_FAKE_PROVIDERS`` set, providers without a key get a
        ``FakeProvider`` instead of being left out.
        """
        settings = settings or get_settings()
        registry = cls()

        for name in KNOWN_PROVIDERS:
            config = build_provider_config(name, settings)
            if config is not None:
                registry.register(name, OpenAICompatibleProvider(config))
            elif settings.llm.USE_FAKE_PROVIDERS:
                registry.register(name, FakeProvider.named(name))

        if not registry.available():
            logger.warning("No AI providers configured", stage="4.0")
        return registry

    def register(self, name: str, provider: BaseProvider) -> None:
        self._providers[name] = provider
        logger.info("Registered provider", stage="4.0", provider=name, adapter=type(provider).__name__)

    def get(self, name: str) -> BaseProvider:
        """
        Raises:
            ProviderNotConfiguredError: No adapter is registered for ``name``
        """
        provider = self._providers.get(name)
        if provider is None:
            raise ProviderNotConfiguredError(
                f"Provider not configured: {name}", details={"provider": name}
            )
        return provider

    def available(self) -> list[str]:
        return list(self._providers)

    def __contains__(self, name: str) -> bool:
        return name in self._providers
