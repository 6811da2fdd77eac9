"""
Chat Routes

    POST /api/chat         one complete answer (JSON)
    POST /api/chat/stream  the same conversation as Server-Sent Events

Both endpoints are rate limited per client before any provider work. Errors
raised by the service (rate limit, validation, all providers down, provider
failure) are turned into JSON responses by the exception handlers in
``nexus_resilience.app``; handlers here only deal with the happy path.

SSE format:
    event: chunk
    data: {"type": "chunk", "content": "..."}

    event: complete
    data: {"type": "complete"}

    data: [DONE]

A mid-stream failure replaces ``complete`` with one ``error`` event whose
``error`` field is a fixed friendly message.
"""

import asyncio
from collections.abc import AsyncIterator

import orjson
from fastapi import APIRouter, Request, Response, status
from fastapi.responses import StreamingResponse

from nexus_resilience.api.dependencies import ChatServiceDep, ClientDep
from nexus_resilience.api.models.chat import ChatRequest, ChatResponse, ErrorResponse
from nexus_resilience.core.config.constants import (
    HEADER_SERVED_BY,
    SESSION_COOKIE_MAX_AGE,
    SESSION_COOKIE_NAME,
)
from nexus_resilience.core.logging import get_logger
from nexus_resilience.rate_limiting.client_identifier import ClientIdentifier, generate_session_id
from nexus_resilience.resilience.stream_recovery import StreamEvent

router = APIRouter(prefix="/chat", tags=["Chat"])
logger = get_logger(__name__)

# Seconds between disconnect checks while /chat is working
DISCONNECT_POLL_INTERVAL = 0.5

_ERROR_RESPONSES = {
    400: {"model": ErrorResponse, "description": "Invalid conversation"},
    429: {"model": ErrorResponse, "description": "Rate limited (see Retry-After)"},
    502: {"model": ErrorResponse, "description": "Providers failed after retries"},
    503: {"model": ErrorResponse, "description": "All providers unavailable"},
}


def format_sse(event: StreamEvent) -> str:
    """Serialize one event in SSE wire format."""
    payload = orjson.dumps(event.to_dict()).decode("utf-8")
    return f"event: {event.type}\ndata: {payload}\n\n"


async def watch_disconnect(request: Request, cancelled: asyncio.Event) -> None:
    """Set ``cancelled`` once the client goes away."""
    while not cancelled.is_set():
        if await request.is_disconnected():
            logger.info("Client disconnected, cancelling provider retries")
            cancelled.set()
            return
        await asyncio.sleep(DISCONNECT_POLL_INTERVAL)


def _issue_session_cookie(response: Response, client: ClientIdentifier) -> None:
    """Give fingerprinted callers a session so later requests are tracked by cookie."""
    if not client.is_fingerprint:
        return
    response.set_cookie(
        SESSION_COOKIE_NAME,
        generate_session_id(),
        max_age=SESSION_COOKIE_MAX_AGE,
        httponly=True,
        samesite="lax",
    )


@router.post("", response_model=ChatResponse, responses=_ERROR_RESPONSES)
async def chat(
    request: Request,
    body: ChatRequest,
    response: Response,
    service: ChatServiceDep,
    client: ClientDep,
):
    """Answer a conversation through cache, failover and retries."""
    await service.enforce_rate_limit(client)

    cancelled = asyncio.Event()
    watcher = asyncio.create_task(watch_disconnect(request, cancelled))
    try:
        result = await service.chat(
            messages=body.messages,
            mode=body.mode,
            model=body.model,
            provider=body.provider,
            context_signature=body.context_signature,
            cancel_event=cancelled,
        )
    finally:
        watcher.cancel()

    response.headers[HEADER_SERVED_BY] = result.provider
    _issue_session_cookie(response, client)
    return ChatResponse(**result.to_dict())


@router.post(
    "/stream",
    status_code=status.HTTP_200_OK,
    responses={200: {"content": {"text/event-stream": {}}}, **_ERROR_RESPONSES},
)
async def chat_stream(
    request: Request, body: ChatRequest, service: ChatServiceDep, client: ClientDep
):
    """Stream an answer as Server-Sent Events."""
    await service.enforce_rate_limit(client)

    provider, events = service.stream_chat(
        messages=body.messages,
        mode=body.mode,
        model=body.model,
        provider=body.provider,
        context_signature=body.context_signature,
    )

    async def event_source() -> AsyncIterator[str]:
        async for event in events:
            if await request.is_disconnected():
                logger.info("Client disconnected mid-stream", provider=provider)
                return
            yield format_sse(event)
        yield "data: [DONE]\n\n"

    response = StreamingResponse(
        event_source(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
            HEADER_SERVED_BY: provider,
        },
    )
    _issue_session_cookie(response, client)
    return response
