"""
Admin and Health API Models
"""

from typing import Any

from pydantic import BaseModel, Field


class ProviderHealth(BaseModel):
    healthy: bool
    state: str = Field(..., description="closed, open or half-open")
    failures: int = Field(..., ge=0)
    total_failures: int = Field(..., ge=0)


class CacheSummary(BaseModel):
    enabled: bool
    size: int = Field(..., ge=0)
    max_size: int = Field(..., ge=0)


class HealthResponse(BaseModel):
    """
    Health snapshot.

    ``status`` is "degraded" when every known provider has an open circuit.
    """

    status: str
    version: str
    environment: str
    providers: dict[str, ProviderHealth]
    configured_providers: list[str]
    rate_limit_mode: str
    cache: CacheSummary


class CacheEntryInfo(BaseModel):
    key: str
    age_ms: int
    hits: int
    model: str


class CacheStatsResponse(CacheSummary):
    entries: list[CacheEntryInfo] = Field(default_factory=list, description="Top entries by hits")


class CacheInvalidateResponse(BaseModel):
    removed: int = Field(..., ge=0)
    pattern: str | None = None


class CircuitResetRequest(BaseModel):
    """Reset one provider's circuit, or every circuit when ``provider`` is omitted."""

    provider: str | None = None


class CircuitResetResponse(BaseModel):
    reset: list[str]
    providers: dict[str, Any]
