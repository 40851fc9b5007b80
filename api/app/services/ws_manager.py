"""WebSocket connection manager for live points notifications."""
import logging
from collections import defaultdict

from fastapi import WebSocket

logger = logging.getLogger(__name__)


class ConnectionManager:
    """Manages WebSocket connections per user."""

    def __init__(self):
        # user_id -> list of WebSocket connections (user can have multiple tabs/devices)
        self.active_connections: dict[int, list[WebSocket]] = defaultdict(list)

    async def connect(self, websocket: WebSocket, user_id: int):
        """Accept and register a new connection."""
        await websocket.accept()
        self.active_connections[user_id].append(websocket)
        logger.info(f'User {user_id} connected. Total connections: {len(self.active_connections[user_id])}')

    def disconnect(self, websocket: WebSocket, user_id: int):
        """Remove a connection."""
        connections = self.active_connections.get(user_id, [])
        if websocket in connections:
            connections.remove(websocket)
        if not connections:
            self.active_connections.pop(user_id, None)
        logger.info(f'User {user_id} disconnected. Remaining: {len(self.active_connections.get(user_id, []))}')

    async def send_to_user(self, user_id: int, message: dict) -> int:
        """Push a message to every live connection of a user. Returns how many got it."""
        connections = list(self.active_connections.get(user_id, []))
        if not connections:
            logger.debug(f'User {user_id} has no active connections')
            return 0

        delivered = 0
        dead_connections = []
        for connection in connections:
            try:
                await connection.send_json(message)
                delivered += 1
            except Exception as e:
                logger.warning(f'Failed to push to user {user_id}: {e}')
                dead_connections.append(connection)
        # Clean up dead connections
        for conn in dead_connections:
            self.disconnect(conn, user_id)
        return delivered

    def is_online(self, user_id: int) -> bool:
        return bool(self.active_connections.get(user_id))


# Singleton instance
manager = ConnectionManager()
