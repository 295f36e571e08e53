"""
WebSocket Module

Real-time chat feed for community watch system messages.
"""

from nexus.api.websocket.handlers import (
    ConnectionManager,
    WebSocketChatBroadcaster,
    connection_manager,
    websocket_router,
)

__all__ = [
    "ConnectionManager",
    "WebSocketChatBroadcaster",
    "connection_manager",
    "websocket_router",
]
