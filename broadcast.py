import asyncio
import json
from typing import Any, Dict, Optional, Set

from constants import MAX_PENDING_EVENTS
from logging_config import get_logger

logger = get_logger(__name__)

USER_DISCONNECTED_EVENT = "user-disconnected"


class Connection:
    """A live WebSocket attachment with an ordered outbound queue.

    Events are queued synchronously and written by a single background task,
    so callers never suspend on delivery and each peer sees its events in the
    order they were queued. A peer that falls more than ``max_pending`` events
    behind is closed and its backlog discarded.
    """

    def __init__(self, connection_id: str, websocket, max_pending: int = MAX_PENDING_EVENTS):
        self.connection_id = connection_id
        self.websocket = websocket
        self.rooms: Set[str] = set()
        self._outbox: asyncio.Queue = asyncio.Queue(maxsize=max_pending)
        self._writer: Optional[asyncio.Task] = None
        self._closed = False

    def start(self):
        if self._writer is None:
            self._writer = asyncio.create_task(self._drain())

    def enqueue(self, event: str, data: Any) -> bool:
        if self._closed:
            return False
        try:
            self._outbox.put_nowait({"event": event, "data": data})
        except asyncio.QueueFull:
            logger.warning(f"Connection {self.connection_id} is not reading; dropping it")
            self._abandon()
            return False
        return True

    @property
    def closed(self) -> bool:
        return self._closed

    def _abandon(self):
        self._closed = True
        if self._writer is not None:
            self._writer.cancel()
            self._writer = None
        while not self._outbox.empty():
            self._outbox.get_nowait()
            self._outbox.task_done()

    async def flush(self):
        """Wait until every queued event has been handed to the socket."""
        if self._closed:
            return
        await self._outbox.join()

    async def _drain(self):
        while True:
            message = await self._outbox.get()
            try:
                if not self._closed:
                    await self.websocket.send_text(json.dumps(message))
            except Exception as e:
                # Socket is gone; nothing queued after this can be delivered
                logger.warning(f"Error sending to connection {self.connection_id}: {e}")
                self._closed = True
            finally:
                self._outbox.task_done()

    async def close(self):
        self._closed = True
        if self._writer is not None:
            self._writer.cancel()
            try:
                await self._writer
            except asyncio.CancelledError:
                pass
            self._writer = None


class BroadcastHub:
    """Room groups over live connections, with fan-out and point-to-point delivery."""

    def __init__(self, max_pending: int = MAX_PENDING_EVENTS):
        self.max_pending = max_pending
        # Format: {connection_id: Connection}
        self._connections: Dict[str, Connection] = {}
        # Format: {room_id: {connection_id}}
        self._groups: Dict[str, Set[str]] = {}

    def register(self, connection_id: str, websocket) -> Connection:
        connection = Connection(connection_id, websocket, max_pending=self.max_pending)
        self._connections[connection_id] = connection
        connection.start()
        logger.debug(f"Registered connection {connection_id} (total: {len(self._connections)})")
        return connection

    def get(self, connection_id: str) -> Optional[Connection]:
        return self._connections.get(connection_id)

    def join(self, connection_id: str, room_id: str):
        connection = self._connections.get(connection_id)
        if connection is None:
            logger.debug(f"Join ignored for unknown connection {connection_id}")
            return
        self._groups.setdefault(room_id, set()).add(connection_id)
        connection.rooms.add(room_id)
        logger.debug(f"Connection {connection_id} joined group {room_id} ({len(self._groups[room_id])} members)")

    def leave(self, connection_id: str, room_id: str) -> bool:
        members = self._groups.get(room_id)
        if not members or connection_id not in members:
            return False
        members.discard(connection_id)
        if not members:
            del self._groups[room_id]
        connection = self._connections.get(connection_id)
        if connection is not None:
            connection.rooms.discard(room_id)
        self.broadcast_to_room(room_id, connection_id, USER_DISCONNECTED_EVENT, connection_id)
        logger.debug(f"Connection {connection_id} left group {room_id}")
        return True

    def members(self, room_id: str) -> Set[str]:
        return set(self._groups.get(room_id, ()))

    def rooms_of(self, connection_id: str) -> Set[str]:
        connection = self._connections.get(connection_id)
        return set(connection.rooms) if connection else set()

    def broadcast_to_room(self, room_id: str, sender_id: Optional[str], event: str, payload: Any) -> int:
        delivered = 0
        for member_id in self._groups.get(room_id, ()):
            if member_id == sender_id:
                continue
            if self.emit(member_id, event, payload):
                delivered += 1
        logger.debug(f"Broadcast {event} in room {room_id} to {delivered} connections")
        return delivered

    def emit(self, connection_id: str, event: str, payload: Any) -> bool:
        connection = self._connections.get(connection_id)
        if connection is None:
            logger.debug(f"Dropping {event} for departed connection {connection_id}")
            return False
        return connection.enqueue(event, payload)

    def send_to_connection(self, target_id: str, sender_id: str, event: str, payload: Any) -> bool:
        return self.emit(target_id, event, {"payload": payload, "from": sender_id})

    async def disconnect(self, connection_id: str):
        connection = self._connections.pop(connection_id, None)
        if connection is None:
            return
        for room_id in connection.rooms:
            members = self._groups.get(room_id)
            if members is None:
                continue
            members.discard(connection_id)
            if members:
                self.broadcast_to_room(room_id, connection_id, USER_DISCONNECTED_EVENT, connection_id)
            else:
                del self._groups[room_id]
        logger.info(f"Connection {connection_id} disconnected from {len(connection.rooms)} rooms")
        connection.rooms.clear()
        await connection.close()

    async def close(self):
        connections = list(self._connections.values())
        self._connections.clear()
        self._groups.clear()
        for connection in connections:
            await connection.close()
