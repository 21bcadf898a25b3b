"""
In-memory connection registry and fan-out.

connection_id → asyncio.Queue — one outbound queue per connected WebSocket.
The router pushes events in; each WebSocket handler drains its own queue.
The router only ever sees connection ids, never sockets.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any

log = logging.getLogger(__name__)


class ConnectionRegistry:
    def __init__(self) -> None:
        self._queues: dict[str, asyncio.Queue] = {}

    def register(self, connection_id: str) -> asyncio.Queue:
        if connection_id in self._queues:
            raise ValueError(f"connection {connection_id} already registered")
        q: asyncio.Queue = asyncio.Queue()
        self._queues[connection_id] = q
        return q

    def unregister(self, connection_id: str) -> None:
        self._queues.pop(connection_id, None)

    def is_connected(self, connection_id: str) -> bool:
        return connection_id in self._queues

    async def send_to(self, connection_id: str, event: str, data: Any = None) -> bool:
        """Queue an event for one connection. False if it is gone."""
        q = self._queues.get(connection_id)
        if q is None:
            return False
        q.put_nowait({"event": event, "data": data})
        return True

    async def broadcast_except(self, connection_id: str, event: str, data: Any = None) -> int:
        """Queue an event for every connection but one; returns the fan-out size."""
        message = {"event": event, "data": data}
        sent = 0
        for cid, q in list(self._queues.items()):
            if cid == connection_id:
                continue
            q.put_nowait(message)
            sent += 1
        log.debug("broadcast %s to %d connection(s)", event, sent)
        return sent

    def connection_count(self) -> int:
        return len(self._queues)


# Singleton — imported directly by main.py and the router
connections = ConnectionRegistry()
