from nexus_resilience.api.routes.admin import router as admin_router
from nexus_resilience.api.routes.chat import router as chat_router
from nexus_resilience.api.routes.health import router as health_router

__all__ = ["admin_router", "chat_router", "health_router"]
