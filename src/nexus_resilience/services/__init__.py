"""
Services Module

Application services composing the resilience primitives.
"""

from nexus_resilience.services.chat_service import ChatResult, ChatService

__all__ = ["ChatResult", "ChatService"]
