"""
Nexus WebSocket Handlers

Provides the /ws/chat feed that community chat clients keep open to
receive system messages (incident alerts, watcher progress, verified
notices) as they happen.
"""

from datetime import UTC, datetime
from typing import Any
from urllib.parse import urlparse

import structlog
from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from nexus.config import get_settings
from nexus.models.base import generate_id
from nexus.models.chat import SystemChatMessage

logger = structlog.get_logger(__name__)

websocket_router = APIRouter()

MAX_CHAT_CONNECTIONS = 1000


def validate_websocket_origin(websocket: WebSocket) -> bool:
    """Reject browser connections from origins outside the CORS list."""
    origin = websocket.headers.get("origin")
    if not origin:
        return True

    settings = get_settings()
    origin_host = urlparse(origin).netloc.lower()

    for allowed in settings.cors_origins_list:
        if allowed == "*":
            return True
        if urlparse(allowed).netloc.lower() == origin_host:
            return True

    logger.warning("websocket_origin_rejected", origin=origin)
    return False


# ============================================================================
# Connection Manager
# ============================================================================


class WebSocketConnection:
    """Represents a single WebSocket connection with metadata."""

    def __init__(self, websocket: WebSocket, connection_id: str) -> None:
        self.websocket = websocket
        self.connection_id = connection_id
        self.connected_at = datetime.now(UTC)
        self.message_count = 0

    async def send_json(self, data: dict[str, Any]) -> bool:
        """Send JSON data to the client."""
        try:
            await self.websocket.send_json(data)
            self.message_count += 1
            return True
        except (WebSocketDisconnect, ConnectionError, OSError, RuntimeError) as e:
            logger.warning(
                "websocket_send_failed",
                connection_id=self.connection_id,
                error=str(e),
            )
            return False


class ConnectionManager:
    """Tracks open chat connections and fans messages out to them."""

    def __init__(self, max_connections: int = MAX_CHAT_CONNECTIONS) -> None:
        self._chat_connections: dict[str, WebSocketConnection] = {}
        self._max_connections = max_connections
        self._total_connections = 0
        self._total_messages_sent = 0

    @property
    def connection_count(self) -> int:
        return len(self._chat_connections)

    def can_connect(self) -> bool:
        return len(self._chat_connections) < self._max_connections

    async def connect_chat(self, websocket: WebSocket) -> WebSocketConnection:
        """Accept a new chat connection."""
        await websocket.accept()

        connection = WebSocketConnection(websocket=websocket, connection_id=generate_id())
        self._chat_connections[connection.connection_id] = connection
        self._total_connections += 1

        logger.info("websocket_chat_connected", connection_id=connection.connection_id)

        await connection.send_json(
            {
                "type": "connected",
                "connection_id": connection.connection_id,
                "timestamp": datetime.now(UTC).isoformat(),
            }
        )
        return connection

    async def disconnect_chat(self, connection_id: str) -> None:
        if self._chat_connections.pop(connection_id, None) is not None:
            logger.info("websocket_chat_disconnected", connection_id=connection_id)

    async def broadcast_chat(self, message_type: str, data: dict[str, Any]) -> int:
        """
        Send a message to every open chat connection.

        Returns:
            Number of connections the message reached
        """
        message = {"type": message_type, "data": data}

        sent = 0
        disconnected = []
        for conn_id, connection in list(self._chat_connections.items()):
            if await connection.send_json(message):
                sent += 1
                self._total_messages_sent += 1
            else:
                disconnected.append(conn_id)

        for conn_id in disconnected:
            await self.disconnect_chat(conn_id)

        return sent

    def get_stats(self) -> dict[str, Any]:
        return {
            "chat_connections": len(self._chat_connections),
            "total_connections_ever": self._total_connections,
            "total_messages_sent": self._total_messages_sent,
        }


connection_manager = ConnectionManager()


class WebSocketChatBroadcaster:
    """ChatBroadcaster that pushes system messages to /ws/chat clients."""

    def __init__(self, manager: ConnectionManager | None = None) -> None:
        self._manager = manager or connection_manager

    async def broadcast(self, message: SystemChatMessage) -> None:
        sent = await self._manager.broadcast_chat("chatMessage", message.to_wire())
        logger.debug("chat_system_message_broadcast", recipients=sent, color=message.color)


# ============================================================================
# Endpoints
# ============================================================================


@websocket_router.websocket("/ws/chat")
async def websocket_chat(websocket: WebSocket) -> None:
    """
    Chat feed for community members.

    Message Format (outgoing):
    - {"type": "connected", "connection_id": "...", "timestamp": "..."}
    - {"type": "chatMessage", "data": {"content": "...", "username": "System", ...}}
    - {"type": "pong"}

    Message Format (incoming):
    - {"type": "ping"}
    """
    if not validate_websocket_origin(websocket):
        await websocket.close(code=4003, reason="Origin not allowed")
        return

    if not connection_manager.can_connect():
        await websocket.close(code=4029, reason="Too many connections")
        return

    connection = await connection_manager.connect_chat(websocket)

    try:
        while True:
            data = await websocket.receive_json()
            if isinstance(data, dict) and data.get("type") == "ping":
                await connection.send_json({"type": "pong"})
    except WebSocketDisconnect:
        pass
    except ValueError as e:
        logger.info("websocket_chat_bad_message", connection_id=connection.connection_id, error=str(e))
    finally:
        await connection_manager.disconnect_chat(connection.connection_id)
