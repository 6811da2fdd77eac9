#!/usr/bin/env python3
"""
Centralized Configuration Module using Pydantic Settings

This module provides type-safe, environment-based configuration for the AI
resilience layer. All tunables (provider credentials, circuit breaker
thresholds, cache bounds, rate-limit windows, logging) are loaded here.

Architectural Decision: Pydantic Settings for type safety and validation
- Environment variable loading with .env support
- Type validation at startup (fail fast on misconfiguration)
- Easy testing with override mechanisms (reload_settings)

Runtime toggles that operators flip without a restart (AI_CACHE_ENABLED,
AI_FAILOVER_ENABLED, RATE_LIMIT_FAIL_CLOSED) are read through FeatureFlags,
which is re-instantiated on every call instead of being cached.
"""

from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from nexus_resilience.core.config.constants import (
    CACHE_MAX_SIZE,
    CIRCUIT_FAILURE_THRESHOLD,
    CIRCUIT_RECOVERY_TIMEOUT,
    FAILOVER_ATTEMPT_TIMEOUT,
    FAILOVER_MAX_RETRIES,
    MAX_MESSAGES_PER_WINDOW,
    MAX_TRANSCRIPTIONS_PER_WINDOW,
    RATE_LIMIT_BURST_MAX,
    RATE_LIMIT_BURST_WINDOW_MS,
    RATE_LIMIT_WINDOW_MS,
    TRANSCRIBE_RATE_LIMIT_WINDOW_MS,
)

_TRUTHY = ("true", "1")
_FALSY = ("false", "0")


def parse_bool_flag(value: str | None) -> bool | None:
    """
    Interpret a bool-ish environment string.

    Returns True for "true"/"1", False for "false"/"0" and None for anything
    else (unset, empty or unrecognized), leaving the caller to apply its default.
    """
    if value is None:
        return None
    normalized = value.strip().lower()
    if normalized in _TRUTHY:
        return True
    if normalized in _FALSY:
        return False
    return None


class LLMProviderSettings(BaseSettings):
    """
    Upstream AI provider credentials and endpoints.

    Every provider is reached through an OpenAI-compatible endpoint, so each
    one only needs an API key, a base URL and a default model.
    """

    OPENAI_API_KEY: str | None = Field(default=None, description="OpenAI API key")
    OPENAI_BASE_URL: str = Field(default="https://api.openai.com/v1", description="OpenAI base URL")
    OPENAI_MODEL: str = Field(default="gpt-4o-mini", description="OpenAI default model")

    ANTHROPIC_API_KEY: str | None = Field(default=None, description="Anthropic API key")
    ANTHROPIC_BASE_URL: str = Field(default="https://api.anthropic.com/v1/", description="Anthropic base URL")
    ANTHROPIC_MODEL: str = Field(default="claude-3-5-haiku-latest", description="Anthropic default model")

    GOOGLE_API_KEY: str | None = Field(default=None, description="Google Gemini API key")
    GOOGLE_BASE_URL: str = Field(
        default="https://generativelanguage.googleapis.com/v1beta/openai/",
        description="Gemini OpenAI-compatible base URL",
    )
    GOOGLE_MODEL: str = Field(default="gemini-2.0-flash", description="Gemini default model")

    XAI_API_KEY: str | None = Field(default=None, description="xAI API key")
    XAI_BASE_URL: str = Field(default="https://api.x.ai/v1", description="xAI base URL")
    XAI_MODEL: str = Field(default="grok-3-mini", description="xAI default model")

    MOONSHOT_API_KEY: str | None = Field(default=None, description="Moonshot API key")
    MOONSHOT_BASE_URL: str = Field(default="https://api.moonshot.ai/v1", description="Moonshot base URL")
    MOONSHOT_MODEL: str = Field(default="kimi-k2-0711-preview", description="Moonshot default model")

    PROVIDER_TIMEOUT: float = Field(default=30.0, description="Provider request timeout in seconds")
    USE_FAKE_PROVIDERS: bool = Field(
        default=False, description="Register fake providers for every provider without a key"
    )

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True)


class CircuitBreakerSettings(BaseSettings):
    """
    Circuit breaker thresholds.

    STAGE-CB: Circuit breaker configuration
    """

    CB_FAILURE_THRESHOLD: int = Field(
        default=CIRCUIT_FAILURE_THRESHOLD, description="Consecutive failures before opening circuit"
    )
    CB_RECOVERY_TIMEOUT: float = Field(
        default=CIRCUIT_RECOVERY_TIMEOUT, description="Seconds before an open circuit allows a trial call"
    )

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True)


class FailoverSettings(BaseSettings):
    """Failover retry behaviour."""

    FAILOVER_MAX_RETRIES: int = Field(
        default=FAILOVER_MAX_RETRIES, description="Extra attempts on the fallback provider"
    )
    FAILOVER_ATTEMPT_TIMEOUT: float = Field(
        default=FAILOVER_ATTEMPT_TIMEOUT, description="Seconds allowed per provider attempt"
    )
    FAILOVER_PRIMARY_PROVIDER: str = Field(default="openai", description="Preferred provider")
    FAILOVER_FALLBACK_PROVIDER: str = Field(default="anthropic", description="Fallback provider")

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True)


class RateLimitSettings(BaseSettings):
    """
    Rate limiting configuration.

    STAGE-1: Rate limiting thresholds
    """

    RATE_LIMIT_WINDOW_MS: int = Field(default=RATE_LIMIT_WINDOW_MS, description="Chat window length")
    RATE_LIMIT_MAX_MESSAGES: int = Field(
        default=MAX_MESSAGES_PER_WINDOW, description="Chat requests per window"
    )
    TRANSCRIBE_RATE_LIMIT_WINDOW_MS: int = Field(
        default=TRANSCRIBE_RATE_LIMIT_WINDOW_MS, description="Transcription window length"
    )
    RATE_LIMIT_MAX_TRANSCRIPTIONS: int = Field(
        default=MAX_TRANSCRIPTIONS_PER_WINDOW, description="Transcriptions per window"
    )
    RATE_LIMIT_BURST_WINDOW_MS: int = Field(
        default=RATE_LIMIT_BURST_WINDOW_MS, description="Burst detection window"
    )
    RATE_LIMIT_BURST_MAX: int = Field(
        default=RATE_LIMIT_BURST_MAX, description="Requests allowed per burst window (session ids)"
    )
    RATE_LIMIT_REDIS_URL: str | None = Field(
        default=None, description="Redis URL enabling the distributed rate-limit store"
    )

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True)


class CacheSettings(BaseSettings):
    """
    Response cache configuration.

    STAGE-3: Cache TTL configuration
    """

    CACHE_RESPONSE_TTL: int = Field(default=3600, description="Response cache TTL in seconds (1 hour)")
    CACHE_MAX_SIZE: int = Field(default=CACHE_MAX_SIZE, description="Maximum cached responses")

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True)


class LoggingSettings(BaseSettings):
    """
    Logging configuration for structured logging.

    Architectural Decision: structlog for production-grade logging
    """

    LOG_LEVEL: str = Field(default="INFO", description="Logging level")
    LOG_FORMAT: Literal["json", "console"] = Field(default="json", description="Log output format")

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"LOG_LEVEL must be one of {valid_levels}")
        return v.upper()

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True)


class ApplicationSettings(BaseSettings):
    """General application settings."""

    ENVIRONMENT: Literal["development", "test", "staging", "production"] = Field(
        default="development", description="Application environment"
    )
    APP_NAME: str = Field(default="Nexus AI Resilience", description="Application name")
    APP_VERSION: str = Field(default="1.0.0", description="Application version")
    API_HOST: str = Field(default="0.0.0.0", description="API host")
    API_PORT: int = Field(default=8000, description="API port")
    CORS_ORIGINS: list[str] = Field(default=["*"], description="Allowed CORS origins")

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True)


class Settings(BaseSettings):
    """
    Main settings class that aggregates all configuration sections.

    Usage:
        from nexus_resilience.core.config.settings import get_settings

        settings = get_settings()
        threshold = settings.circuit_breaker.CB_FAILURE_THRESHOLD
        openai_key = settings.llm.OPENAI_API_KEY
    """

    llm: LLMProviderSettings = Field(default_factory=LLMProviderSettings)
    circuit_breaker: CircuitBreakerSettings = Field(default_factory=CircuitBreakerSettings)
    failover: FailoverSettings = Field(default_factory=FailoverSettings)
    rate_limit: RateLimitSettings = Field(default_factory=RateLimitSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    app: ApplicationSettings = Field(default_factory=ApplicationSettings)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )


class FeatureFlags(BaseSettings):
    """
    Operator toggles re-read from the environment on every access.

    The raw strings are kept so that "unset" and "unrecognized" can fall
    back to environment-dependent defaults.
    """

    AI_CACHE_ENABLED: str | None = Field(default=None, description="Force response cache on/off")
    AI_FAILOVER_ENABLED: str | None = Field(default=None, description="Disable provider failover")
    RATE_LIMIT_FAIL_CLOSED: str | None = Field(
        default=None, description="Reject requests when the distributed store is unreachable"
    )
    ENVIRONMENT: str = Field(default="development", description="Application environment")

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True, extra="ignore")

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.strip().lower() == "production"

    @property
    def cache_enabled(self) -> bool:
        explicit = parse_bool_flag(self.AI_CACHE_ENABLED)
        return self.is_production if explicit is None else explicit

    @property
    def failover_enabled(self) -> bool:
        # Enabled unless explicitly disabled
        return parse_bool_flag(self.AI_FAILOVER_ENABLED) is not False

    @property
    def fail_closed(self) -> bool:
        explicit = parse_bool_flag(self.RATE_LIMIT_FAIL_CLOSED)
        return self.is_production if explicit is None else explicit


def get_feature_flags() -> FeatureFlags:
    """Read the current operator toggles (never cached)."""
    return FeatureFlags()


# Global settings instance (singleton pattern)
_settings: Settings | None = None


def get_settings() -> Settings:
    """
    Get the global settings instance (singleton).

    Returns:
        Settings: Global settings instance
    """
    global _settings

    if _settings is None:
        _settings = Settings()

    return _settings


def reload_settings() -> Settings:
    """
    Reload settings (useful for testing).

    Returns:
        Settings: New settings instance
    """
    global _settings
    _settings = Settings()
    return _settings
