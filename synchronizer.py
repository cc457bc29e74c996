"""
Room synchronization between live connections and the durable store.

The synchronizer is the authority for a room's current text. It re-reads the
store on every join or REST read, writes through on every edit and keeps the
``lastAccessedAt`` rule in one place: a record gets the timestamp when it is
created and has it refreshed on later access only if it already carries one.
"""

import asyncio
from typing import Dict, Optional

from backend import RedisBackend, RoomRecord, StorageError, utc_now_iso
from broadcast import BroadcastHub
from constants import MAX_CODE_LENGTH, MAX_ROOM_ID_LENGTH
from logging_config import get_logger

logger = get_logger(__name__)

LOAD_CODE_EVENT = "load-code"
USER_CONNECTED_EVENT = "user-connected"
CODE_CHANGE_EVENT = "code-change"
ERROR_EVENT = "error"
SIGNAL_EVENTS = ("offer", "answer", "ice-candidate")

JOIN_FAILED_MESSAGE = "Failed to join room"
SAVE_FAILED_MESSAGE = "Failed to save code"


class InvalidRoomRequest(ValueError):
    """A room id or code payload failed validation."""


class CodeTooLarge(InvalidRoomRequest):
    pass


def validate_room_id(room_id) -> str:
    if not isinstance(room_id, str) or room_id == "":
        raise InvalidRoomRequest("Room id must be a non-empty string")
    if len(room_id) > MAX_ROOM_ID_LENGTH:
        raise InvalidRoomRequest(f"Room id exceeds {MAX_ROOM_ID_LENGTH} characters")
    return room_id


class RoomSynchronizer:
    def __init__(self, backend: RedisBackend, hub: BroadcastHub, max_code_length: int = MAX_CODE_LENGTH):
        self.backend = backend
        self.hub = hub
        self.max_code_length = max_code_length
        # Latest persistence task per connection; each new one waits on it
        self._pending_writes: Dict[str, asyncio.Task] = {}

    def validate_code(self, code) -> str:
        if not isinstance(code, str):
            raise InvalidRoomRequest("Code must be a string")
        if len(code) > self.max_code_length:
            raise CodeTooLarge(f"Code exceeds {self.max_code_length} characters")
        return code

    async def _load_code(self, room_id: str) -> str:
        record = await self.backend.get_room(room_id)
        if record is None:
            return ""
        if record.is_timestamped:
            await self.backend.save_room(room_id, last_accessed_at=utc_now_iso())
        return record.code

    async def _store_code(self, room_id: str, code: str):
        record: Optional[RoomRecord] = await self.backend.get_room(room_id)
        if record is None or record.is_timestamped:
            await self.backend.save_room(room_id, code=code, last_accessed_at=utc_now_iso())
        else:
            # Record predates the access path; leave it untimestamped
            await self.backend.save_room(room_id, code=code)

    async def join_room(self, connection_id: str, room_id: str) -> str:
        validate_room_id(room_id)
        # Transport membership does not depend on the storage outcome
        self.hub.join(connection_id, room_id)
        logger.info(f"User {connection_id} joined room: {room_id}")
        return await self._load_code(room_id)

    async def apply_edit(self, room_id: str, code: str):
        validate_room_id(room_id)
        self.validate_code(code)
        await self._store_code(room_id, code)

    async def read_room(self, room_id: str) -> str:
        validate_room_id(room_id)
        return await self._load_code(room_id)

    async def write_room(self, room_id: str, code: str):
        await self.apply_edit(room_id, code)

    async def handle_join(self, connection_id: str, room_id: str) -> bool:
        try:
            code = await self.join_room(connection_id, room_id)
        except InvalidRoomRequest as e:
            self.hub.emit(connection_id, ERROR_EVENT, str(e))
            return False
        except StorageError as e:
            logger.error(f"Error joining room {room_id} for {connection_id}: {e}", exc_info=True)
            self.hub.emit(connection_id, ERROR_EVENT, JOIN_FAILED_MESSAGE)
            return False
        self.hub.emit(connection_id, LOAD_CODE_EVENT, code)
        self.hub.broadcast_to_room(room_id, connection_id, USER_CONNECTED_EVENT, connection_id)
        return True

    def handle_code_change(self, connection_id: str, room_id: str, code: str) -> Optional[asyncio.Task]:
        """Relay an edit to the room right away and persist it in the background."""
        try:
            validate_room_id(room_id)
            self.validate_code(code)
        except InvalidRoomRequest as e:
            self.hub.emit(connection_id, ERROR_EVENT, str(e))
            return None

        self.hub.broadcast_to_room(room_id, connection_id, CODE_CHANGE_EVENT, code)

        previous = self._pending_writes.get(connection_id)
        task = asyncio.create_task(self._persist_edit(connection_id, room_id, code, previous))
        self._pending_writes[connection_id] = task
        task.add_done_callback(lambda done: self._forget_write(connection_id, done))
        return task

    async def _persist_edit(self, connection_id: str, room_id: str, code: str, previous: Optional[asyncio.Task]):
        if previous is not None and not previous.done():
            await asyncio.wait([previous])
        try:
            await self._store_code(room_id, code)
        except StorageError as e:
            logger.error(f"Error saving code for room {room_id}: {e}", exc_info=True)
            self.hub.emit(connection_id, ERROR_EVENT, SAVE_FAILED_MESSAGE)

    def _forget_write(self, connection_id: str, task: asyncio.Task):
        if self._pending_writes.get(connection_id) is task:
            del self._pending_writes[connection_id]

    def relay_signal(self, connection_id: str, event: str, target_id: str, payload) -> bool:
        if event not in SIGNAL_EVENTS:
            raise InvalidRoomRequest(f"Unsupported signaling event: {event}")
        delivered = self.hub.send_to_connection(target_id, connection_id, event, payload)
        if not delivered:
            logger.debug(f"{event} from {connection_id} to {target_id} dropped: target not connected")
        return delivered

    def leave_room(self, connection_id: str, room_id: str) -> bool:
        left = self.hub.leave(connection_id, room_id)
        if left:
            logger.info(f"User {connection_id} left room: {room_id}")
        return left

    async def drain(self):
        pending = list(self._pending_writes.values())
        if pending:
            logger.info(f"Waiting for {len(pending)} pending writes")
            await asyncio.wait(pending)
