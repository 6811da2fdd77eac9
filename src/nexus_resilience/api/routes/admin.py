"""
Admin Routes

Operational endpoints for the resilience layer:

    GET    /api/admin/cache            cache stats (top entries by hits)
    DELETE /api/admin/cache?pattern=   drop entries whose key contains pattern,
                                       or everything without a pattern
    POST   /api/admin/circuits/reset   close one circuit or all of them
    GET    /api/admin/metrics          Prometheus exposition

SECURITY: these routes are unauthenticated; expose them only on an internal
network. ``verify_admin_access`` is the hook for real access control.
"""

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status

from nexus_resilience.api.dependencies import ChatServiceDep, MetricsDep
from nexus_resilience.api.models.admin import (
    CacheInvalidateResponse,
    CacheStatsResponse,
    CircuitResetRequest,
    CircuitResetResponse,
)
from nexus_resilience.core.logging import get_logger

router = APIRouter(prefix="/admin", tags=["Admin"])
logger = get_logger(__name__)


async def verify_admin_access() -> None:
    """No-op access check; replace with token verification before exposing publicly."""


@router.get(
    "/cache", response_model=CacheStatsResponse, dependencies=[Depends(verify_admin_access)]
)
async def get_cache_stats(service: ChatServiceDep):
    return service.cache.get_cache_stats()


@router.delete(
    "/cache", response_model=CacheInvalidateResponse, dependencies=[Depends(verify_admin_access)]
)
async def invalidate_cache(
    service: ChatServiceDep,
    pattern: str | None = Query(default=None, min_length=1, description="Substring of cache keys"),
):
    if pattern is None:
        removed = service.cache.size
        service.cache.clear()
    else:
        removed = service.cache.invalidate_pattern(pattern)

    logger.info("Cache invalidated via admin", pattern=pattern, removed=removed)
    return CacheInvalidateResponse(removed=removed, pattern=pattern)


@router.post(
    "/circuits/reset",
    response_model=CircuitResetResponse,
    dependencies=[Depends(verify_admin_access)],
)
async def reset_circuits(service: ChatServiceDep, body: CircuitResetRequest | None = None):
    breaker = service.circuit_breaker

    if body is None or body.provider is None:
        reset = breaker.reset_all()
    else:
        if not breaker.reset(body.provider):
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=f"No circuit tracked for provider: {body.provider}",
            )
        reset = [body.provider]

    logger.warning("Circuits reset via admin", providers=reset)
    return CircuitResetResponse(reset=reset, providers=breaker.get_provider_health())


@router.get("/metrics", dependencies=[Depends(verify_admin_access)])
async def get_prometheus_metrics(metrics: MetricsDep):
    payload, content_type = metrics.get_prometheus_metrics()
    return Response(content=payload, media_type=content_type)
