"""
Chat API Models

Pydantic request/response schemas for the chat endpoints.

Request bounds mirror the service limits: at most 50 messages per request
(only the last 12 reach a provider), content above 8000 characters is
truncated during sanitization rather than rejected here.
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator

from nexus_resilience.core.config.constants import KNOWN_PROVIDERS, MAX_MESSAGES_PER_REQUEST

# ============================================================================
# REQUEST MODELS
# ============================================================================


class ChatMessage(BaseModel):
    """One turn of the conversation."""

    role: str = Field(..., min_length=1, max_length=32, description="user or assistant")
    content: str = Field(..., max_length=100000, description="Message text")


class ChatRequest(BaseModel):
    """
    Request body for ``POST /api/chat`` and ``POST /api/chat/stream``.

    ``mode`` and ``context_signature`` take part in the response cache key, so
    two requests only share a cached answer when both match.
    """

    messages: list[ChatMessage] = Field(
        ..., min_length=1, max_length=MAX_MESSAGES_PER_REQUEST, description="Conversation history"
    )
    mode: str = Field(
        default="adaptive",
        min_length=1,
        max_length=64,
        pattern=r"^[A-Za-z0-9_-]+$",
        description="Chat mode (part of the cache key)",
    )
    model: str | None = Field(default=None, max_length=128, description="Model for the primary provider")
    provider: str | None = Field(default=None, description="Preferred provider")
    context_signature: str | None = Field(
        default=None, max_length=256, description="Opaque context that changes the answer"
    )

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "messages": [{"role": "user", "content": "How do circuit breakers work?"}],
                "mode": "adaptive",
                "provider": "openai",
            }
        }
    )

    @field_validator("provider")
    @classmethod
    def validate_provider(cls, v: str | None) -> str | None:
        """None means "use the configured primary"; anything else must be known."""
        if v is None:
            return v
        v = v.strip().lower()
        if v not in KNOWN_PROVIDERS:
            raise ValueError(f"Unknown provider: {v}")
        return v

    @field_validator("model")
    @classmethod
    def validate_model(cls, v: str | None) -> str | None:
        if v is None:
            return v
        v = v.strip()
        return v or None


# ============================================================================
# RESPONSE MODELS
# ============================================================================


class ChatResponse(BaseModel):
    """Successful chat answer."""

    content: str
    provider: str = Field(..., description="Provider that answered, or 'cache'")
    model: str
    cached: bool
    used_fallback: bool
    duration_ms: float = Field(..., ge=0)


class ErrorResponse(BaseModel):
    """Body of every error response. ``error`` is always safe to show users."""

    error: str
    retry_after: int | None = None
