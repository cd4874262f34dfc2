"""Server-side registry of live streaming connections.

Each authenticated user may hold several sockets at once (one per open
client). Events are pushed to users, not rooms: the rooms service decides
which user ids should hear about an event and the hub fans the envelope
out to all of their sockets.

Key features:
    - Concurrent delivery with asyncio.gather()
    - Automatic dead connection cleanup on failed sends

Thread Safety:
    This implementation is designed for async/await usage with a single event loop.
    It is NOT thread-safe for concurrent access from multiple threads.
"""
import asyncio
import logging
from typing import Any, Dict, Iterable, List

from fastapi import WebSocket

logger = logging.getLogger(__name__)


class PushHub:
    """Maps user ids to their open WebSocket connections."""

    def __init__(self) -> None:
        # user_id -> list of active WebSocket connections
        self.active_connections: Dict[str, List[WebSocket]] = {}

    def register(self, websocket: WebSocket, user_id: str) -> None:
        """Track an accepted connection for ``user_id``."""
        connections = self.active_connections.setdefault(user_id, [])
        connections.append(websocket)
        logger.info(f"[Hub] User {user_id} connected ({len(connections)} connection(s))")

    def unregister(self, websocket: WebSocket, user_id: str) -> None:
        """Forget a connection; drops the user entry with its last socket."""
        connections = self.active_connections.get(user_id)
        if not connections:
            return
        if websocket in connections:
            connections.remove(websocket)
        if not connections:
            del self.active_connections[user_id]
        logger.info(f"[Hub] User {user_id} disconnected")

    def connection_count(self, user_id: str) -> int:
        return len(self.active_connections.get(user_id, []))

    def is_online(self, user_id: str) -> bool:
        return self.connection_count(user_id) > 0

    async def send_to_users(self, user_ids: Iterable[str], payload: Dict[str, Any]) -> int:
        """Push ``payload`` to every connection of every listed user.

        Users with no open connection are skipped.

        Returns:
            Number of connections the payload was delivered to.
        """
        targets = [
            (user_id, conn)
            for user_id in dict.fromkeys(user_ids)
            for conn in self.active_connections.get(user_id, [])
        ]
        if not targets:
            return 0

        results = await asyncio.gather(
            *[self._safe_send(conn, payload) for _, conn in targets],
            return_exceptions=True
        )

        delivered = 0
        for (user_id, conn), success in zip(targets, results):
            if success is True:
                delivered += 1
            else:
                self.unregister(conn, user_id)
                logger.debug(f"[Hub] Removed dead connection of user {user_id}")
        return delivered

    async def _safe_send(self, connection: WebSocket, payload: Dict[str, Any]) -> bool:
        """Send to one connection, reporting failure instead of raising."""
        try:
            await connection.send_json(payload)
            return True
        except Exception as e:
            logger.debug(f"[Hub] Failed to send to connection: {e}")
            return False

    def clear(self) -> None:
        self.active_connections.clear()


# Global hub instance shared by the streaming endpoint and the rooms router
hub = PushHub()
