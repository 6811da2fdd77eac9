"""
Health Routes

``GET /api/health`` reports provider circuit health, the rate-limit store
mode and a cache summary. It always answers 200; a "degraded" status means
every provider circuit is open and chat requests will get 503 until one
recovers.
"""

from fastapi import APIRouter

from nexus_resilience.api.dependencies import ChatServiceDep
from nexus_resilience.api.models.admin import HealthResponse

router = APIRouter(prefix="/health", tags=["Health"])


@router.get("", response_model=HealthResponse)
async def health_check(service: ChatServiceDep):
    return service.health()
