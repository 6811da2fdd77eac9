"""
AI Provider Exceptions

All exceptions related to upstream AI provider calls (OpenAI, Anthropic,
Google, xAI, Moonshot).
"""

from nexus_resilience.core.exceptions.base import NexusBaseError

ALL_PROVIDERS_UNAVAILABLE_MESSAGE = (
    "All AI providers are currently unavailable. Please try again later."
)


class ProviderError(NexusBaseError):
    """Base exception for AI provider errors."""
    pass


class ProviderNotAvailableError(ProviderError):
    """
    Raised when a provider cannot be reached.

    Common causes:
    - Provider API is down
    - Network connectivity issues
    """
    pass


class ProviderNotConfiguredError(ProviderError):
    """
    Raised when no adapter is registered for a provider (no API key).

    A deployment problem, not an upstream fault: it is never retried and
    never trips the circuit.
    """
    pass


class ProviderAuthenticationError(ProviderError):
    """
    Raised when provider authentication fails.

    This is a client-side configuration problem: it never trips the circuit.
    """
    pass


class ProviderTimeoutError(ProviderError):
    """Raised when a provider attempt exceeds its timeout."""
    pass


class ProviderAPIError(ProviderError):
    """Raised when a provider API returns an error response."""
    pass


class AllProvidersUnavailableError(ProviderError):
    """
    Raised when both the primary and fallback circuits are open.

    ``details["providers"]`` lists the providers that were considered.
    The message is safe to show to end users.
    """

    def __init__(self, message: str = ALL_PROVIDERS_UNAVAILABLE_MESSAGE, **kwargs):
        super().__init__(message, **kwargs)
