"""WebSocket connection manager.

Keeps per-interface subscriber sets (popup, sidepanel). Used by the
StableStateCoordinator to push committed state and pass failures.
"""

import asyncio
import logging
from fastapi import WebSocket

logger = logging.getLogger(__name__)


MAX_CONNECTIONS_PER_INTERFACE = 20


class ConnectionManager:
    """Manages WebSocket subscribers per interface."""

    def __init__(self):
        # interface -> set of WebSocket connections
        self._connections: dict[str, set[WebSocket]] = {}
        self._lock = asyncio.Lock()

    async def connect(self, interface: str, ws: WebSocket) -> bool:
        """Accept a WebSocket connection and subscribe it to an interface.

        Returns False and closes the socket if the interface already has
        MAX_CONNECTIONS_PER_INTERFACE subscribers.
        """
        async with self._lock:
            existing = self._connections.get(interface, set())
            if len(existing) >= MAX_CONNECTIONS_PER_INTERFACE:
                logger.warning(
                    "WebSocket connection rejected: interface=%s has %d connections (max %d)",
                    interface, len(existing), MAX_CONNECTIONS_PER_INTERFACE,
                )
                await ws.close(code=4008, reason="Too many connections")
                return False

        await ws.accept()
        async with self._lock:
            self._connections.setdefault(interface, set()).add(ws)
            count = len(self._connections[interface])
        logger.info("WebSocket connected: interface=%s subscribers=%d", interface, count)
        return True

    async def disconnect(self, interface: str, ws: WebSocket):
        """Remove a WebSocket subscriber."""
        remaining = 0
        async with self._lock:
            conns = self._connections.get(interface)
            if conns:
                conns.discard(ws)
                remaining = len(conns)
                if not conns:
                    del self._connections[interface]
        logger.info("WebSocket disconnected: interface=%s remaining=%d", interface, remaining)

    async def send_to_interface(self, interface: str, message: dict):
        """Send a JSON message to every subscriber of an interface."""
        conns = self._connections.get(interface, set()).copy()
        dead = []
        for ws in conns:
            try:
                await ws.send_json(message)
            except Exception:
                logger.warning("WebSocket send failed for interface=%s, marking connection as dead", interface)
                dead.append(ws)
        for ws in dead:
            await self.disconnect(interface, ws)

    def get_connection_count(self, interface: str | None = None) -> int:
        """Return the number of active connections, optionally for one interface."""
        if interface is not None:
            return len(self._connections.get(interface, ()))
        return sum(len(conns) for conns in self._connections.values())
