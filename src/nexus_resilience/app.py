#!/usr/bin/env python3
"""
FastAPI Application Entry Point

Wires the resilience layer behind an HTTP API:

    lifespan   builds one ChatService (providers, circuit breaker, cache,
               rate limiter) and stores it in ``app.state``
    middleware request id correlation (X-Request-ID)
    routers    /api/chat, /api/health, /api/admin
    handlers   map the exception hierarchy to JSON responses with fixed,
               user-safe messages

Error mapping:
    RateLimitExceededError        -> 429 + Retry-After
    ValidationError               -> 400
    AllProvidersUnavailableError  -> 503
    ProviderError (anything else) -> 502
    NexusBaseError (anything else)-> 500
"""

import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from nexus_resilience.api import admin_router, chat_router, health_router
from nexus_resilience.core.config.constants import HEADER_REQUEST_ID, HEADER_RETRY_AFTER, Stage
from nexus_resilience.core.config.settings import get_settings
from nexus_resilience.core.exceptions import (
    ALL_PROVIDERS_UNAVAILABLE_MESSAGE,
    AllProvidersUnavailableError,
    NexusBaseError,
    ProviderError,
    RateLimitExceededError,
    ValidationError,
)
from nexus_resilience.core.logging import (
    clear_request_id,
    get_logger,
    log_stage,
    set_request_id,
    setup_logging,
)
from nexus_resilience.rate_limiting.rate_limiter import build_rate_limit_response
from nexus_resilience.services.chat_service import ChatService

logger = get_logger(__name__)

API_PREFIX = "/api"

PROVIDER_FAILURE_MESSAGE = (
    "The AI service could not complete your request right now. Please try again in a moment."
)
INTERNAL_ERROR_MESSAGE = "An unexpected error occurred. Please try again."


# ============================================================================
# Application Lifespan
# ============================================================================


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Build the ChatService on startup and close its stores on shutdown.

    A service already placed in ``app.state`` (tests) is kept as is.
    """
    settings = get_settings()
    setup_logging(log_level=settings.logging.LOG_LEVEL, log_format=settings.logging.LOG_FORMAT)

    logger.info(
        "Starting AI resilience service",
        environment=settings.app.ENVIRONMENT,
        version=settings.app.APP_VERSION,
    )

    service: ChatService | None = getattr(app.state, "chat_service", None)
    if service is None:
        service = ChatService.from_settings()
        app.state.chat_service = service

    log_stage(
        logger,
        Stage.INITIALIZATION,
        "Application startup complete",
        providers=service.registry.available(),
        rate_limit_mode=service.rate_limiter.get_rate_limit_mode(),
    )

    try:
        yield
    finally:
        logger.info("Shutting down application")
        await service.close()
        logger.info("Application shutdown complete")


# ============================================================================
# Exception Handlers
# ============================================================================


async def rate_limit_handler(request: Request, exc: RateLimitExceededError):
    body = build_rate_limit_response(exc.remaining_ms)
    return JSONResponse(
        status_code=429,
        content=body,
        headers={HEADER_RETRY_AFTER: str(body["retry_after"])},
    )


async def validation_error_handler(request: Request, exc: ValidationError):
    return JSONResponse(status_code=400, content={"error": exc.message})


async def all_providers_unavailable_handler(request: Request, exc: AllProvidersUnavailableError):
    logger.error("All providers unavailable", **exc.details)
    return JSONResponse(status_code=503, content={"error": ALL_PROVIDERS_UNAVAILABLE_MESSAGE})


async def provider_error_handler(request: Request, exc: ProviderError):
    logger.error(
        "Provider request failed",
        error_type=type(exc).__name__,
        error=exc.message,
        details=exc.details,
    )
    return JSONResponse(status_code=502, content={"error": PROVIDER_FAILURE_MESSAGE})


async def nexus_error_handler(request: Request, exc: NexusBaseError):
    logger.error("Unhandled service error", **exc.to_dict())
    return JSONResponse(status_code=500, content={"error": INTERNAL_ERROR_MESSAGE})


# ============================================================================
# Application Factory
# ============================================================================


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    Returns:
        FastAPI: Configured application instance
    """
    settings = get_settings()

    app = FastAPI(
        title=settings.app.APP_NAME,
        version=settings.app.APP_VERSION,
        description="Resilience layer for multi-provider AI chat",
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.app.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[HEADER_REQUEST_ID, HEADER_RETRY_AFTER],
    )

    @app.middleware("http")
    async def request_id_middleware(request: Request, call_next):
        """Inject a request ID into logs and responses for correlation."""
        request_id = request.headers.get(HEADER_REQUEST_ID) or str(uuid.uuid4())
        set_request_id(request_id)
        try:
            response = await call_next(request)
            response.headers[HEADER_REQUEST_ID] = request_id
            return response
        finally:
            clear_request_id()

    app.add_exception_handler(RateLimitExceededError, rate_limit_handler)
    app.add_exception_handler(ValidationError, validation_error_handler)
    app.add_exception_handler(AllProvidersUnavailableError, all_providers_unavailable_handler)
    app.add_exception_handler(ProviderError, provider_error_handler)
    app.add_exception_handler(NexusBaseError, nexus_error_handler)

    app.include_router(chat_router, prefix=API_PREFIX)
    app.include_router(health_router, prefix=API_PREFIX)
    app.include_router(admin_router, prefix=API_PREFIX)

    @app.get("/", tags=["Root"])
    async def root():
        return {
            "name": settings.app.APP_NAME,
            "version": settings.app.APP_VERSION,
            "environment": settings.app.ENVIRONMENT,
            "docs": "/docs",
            "health": f"{API_PREFIX}/health",
        }

    return app


def main() -> None:
    import uvicorn

    settings = get_settings()

    uvicorn.run(
        "nexus_resilience.app:create_app",
        factory=True,
        host=settings.app.API_HOST,
        port=settings.app.API_PORT,
        reload=settings.app.ENVIRONMENT == "development",
        log_level=settings.logging.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    main()
