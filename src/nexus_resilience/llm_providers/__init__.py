"""
AI Provider Adapters

Every provider is reached through ``OpenAICompatibleProvider``;
``FakeProvider`` stands in for local runs and tests.
"""

from nexus_resilience.llm_providers.base_provider import BaseProvider, ProviderConfig, ProviderResponse
from nexus_resilience.llm_providers.fake_provider import FakeProvider
from nexus_resilience.llm_providers.openai_compatible import OpenAICompatibleProvider
from nexus_resilience.llm_providers.registry import ProviderRegistry, build_provider_config

__all__ = [
    "BaseProvider",
    "FakeProvider",
    "OpenAICompatibleProvider",
    "ProviderConfig",
    "ProviderRegistry",
    "ProviderResponse",
    "build_provider_config",
]
