from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from constants import REDIS_HOST, REDIS_PORT, REDIS_PASSWORD, REDIS_DB
from redis_keys import REDIS_CODE_KEY, REDIS_CODE_PATTERN, room_id_from_key
from logging_config import get_logger

logger = get_logger(__name__)

CODE_FIELD = "code"
LAST_ACCESSED_FIELD = "lastAccessedAt"


class StorageError(Exception):
    """The durable store is unreachable or rejected an operation."""


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class RoomRecord:
    room_id: str
    code: str = ""
    last_accessed_at: Optional[str] = None

    @property
    def is_timestamped(self) -> bool:
        return bool(self.last_accessed_at)

    @classmethod
    def from_hash(cls, room_id: str, data: dict) -> "RoomRecord":
        return cls(
            room_id=room_id,
            code=data.get(CODE_FIELD) or "",
            last_accessed_at=data.get(LAST_ACCESSED_FIELD) or None,
        )

    def to_dict(self) -> dict:
        result = {CODE_FIELD: self.code}
        if self.last_accessed_at:
            result[LAST_ACCESSED_FIELD] = self.last_accessed_at
        return result


class RedisBackend:
    """Room records stored as one Redis hash per room."""

    def __init__(self, redis_client):
        self.redis_client = redis_client

    @classmethod
    def from_settings(cls, host: str = REDIS_HOST, port: int = REDIS_PORT,
                      password: Optional[str] = REDIS_PASSWORD, db: int = REDIS_DB) -> "RedisBackend":
        logger.info(f"Initializing RedisBackend with connection to {host}:{port}/{db}")
        client = redis.Redis(host=host, port=port, password=password, db=db, decode_responses=True)
        return cls(client)

    async def ping(self):
        try:
            await self.redis_client.ping()
        except (RedisError, OSError) as e:
            logger.error(f"Failed to reach Redis: {e}", exc_info=True)
            raise StorageError("Redis is unreachable") from e
        logger.info("Redis client connected successfully")

    async def close(self):
        try:
            await self.redis_client.aclose()
        except (RedisError, OSError) as e:
            logger.warning(f"Error closing Redis client: {e}")

    async def get_room(self, room_id: str) -> Optional[RoomRecord]:
        logger.debug(f"Fetching room {room_id}")
        key = REDIS_CODE_KEY.format(slug=room_id)
        try:
            data = await self.redis_client.hgetall(key)
        except (RedisError, OSError) as e:
            raise StorageError(f"Failed to read room {room_id}") from e
        if not data:
            logger.debug(f"Room {room_id} not found in Redis")
            return None
        return RoomRecord.from_hash(room_id, data)

    async def save_room(self, room_id: str, code: Optional[str] = None, last_accessed_at: Optional[str] = None):
        """Merge the given fields into the room's record, creating it if needed."""
        mapping = {}
        if code is not None:
            mapping[CODE_FIELD] = code
        if last_accessed_at is not None:
            mapping[LAST_ACCESSED_FIELD] = last_accessed_at
        if not mapping:
            return
        key = REDIS_CODE_KEY.format(slug=room_id)
        try:
            await self.redis_client.hset(key, mapping=mapping)
        except (RedisError, OSError) as e:
            raise StorageError(f"Failed to write room {room_id}") from e
        logger.debug(f"Room {room_id} saved: fields={sorted(mapping)}")

    async def delete_room(self, room_id: str) -> bool:
        key = REDIS_CODE_KEY.format(slug=room_id)
        try:
            deleted = await self.redis_client.delete(key)
        except (RedisError, OSError) as e:
            raise StorageError(f"Failed to delete room {room_id}") from e
        logger.debug(f"Room {room_id} deleted: {deleted}")
        return bool(deleted)

    async def list_rooms(self) -> List[RoomRecord]:
        records = []
        try:
            async for key in self.redis_client.scan_iter(match=REDIS_CODE_PATTERN):
                data = await self.redis_client.hgetall(key)
                if data:
                    records.append(RoomRecord.from_hash(room_id_from_key(key), data))
        except (RedisError, OSError) as e:
            raise StorageError("Failed to list rooms") from e
        logger.debug(f"Listed {len(records)} room records")
        return records
