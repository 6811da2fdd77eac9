"""
HTTP API

Routes -> ChatService -> resilience primitives. Routes only handle HTTP
concerns; error mapping lives in ``nexus_resilience.app``.
"""

from nexus_resilience.api.routes import admin_router, chat_router, health_router

__all__ = ["admin_router", "chat_router", "health_router"]
