"""
FastAPI Dependencies

Route handlers receive the ``ChatService`` built during startup through
``app.state`` instead of module-level singletons, so tests can swap in a
service wired with fake providers:

    app = create_app()
    app.state.chat_service = ChatService(registry=fake_registry)

The ``Annotated`` aliases at the bottom keep route signatures short.
"""

from typing import Annotated

from fastapi import Depends, Request

from nexus_resilience.core.observability.metrics import MetricsCollector, get_metrics_collector
from nexus_resilience.rate_limiting.client_identifier import ClientIdentifier, get_client_identifier
from nexus_resilience.services.chat_service import ChatService


def get_chat_service(request: Request) -> ChatService:
    """
    Retrieve the ChatService from application state.

    Raises:
        AttributeError: The lifespan did not run (app not started)
    """
    return request.app.state.chat_service


def get_client(request: Request) -> ClientIdentifier:
    """Rate-limit identity: session cookie, else header fingerprint."""
    return get_client_identifier(request)


ChatServiceDep = Annotated[ChatService, Depends(get_chat_service)]
ClientDep = Annotated[ClientIdentifier, Depends(get_client)]
MetricsDep = Annotated[MetricsCollector, Depends(get_metrics_collector)]
