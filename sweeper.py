import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from backend import RedisBackend, RoomRecord, StorageError
from constants import RETENTION_DAYS
from logging_config import get_logger

logger = get_logger(__name__)


@dataclass
class SweepResult:
    deleted_count: int = 0
    failed_count: int = 0
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.failed_count == 0


def parse_timestamp(value: str) -> Optional[datetime]:
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (ValueError, TypeError, AttributeError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class RetentionSweeper:
    """Deletes room records that are stale or hold no content."""

    def __init__(self, backend: RedisBackend, retention_days: int = RETENTION_DAYS):
        self.backend = backend
        self.retention = timedelta(days=retention_days)

    def is_expired(self, record: RoomRecord, now: datetime) -> bool:
        # Records without lastAccessedAt are never evaluated
        if not record.is_timestamped:
            return False
        is_empty = not record.code or record.code.strip() == ""
        last_accessed = parse_timestamp(record.last_accessed_at)
        is_stale = last_accessed is not None and last_accessed < now - self.retention
        return is_stale or is_empty

    async def sweep(self, now: Optional[datetime] = None) -> SweepResult:
        now = now or datetime.now(timezone.utc)
        try:
            records = await self.backend.list_rooms()
        except StorageError as e:
            logger.error(f"Error listing rooms for cleanup: {e}", exc_info=True)
            return SweepResult(error=str(e))

        expired = [record.room_id for record in records if self.is_expired(record, now)]
        for room_id in expired:
            logger.info(f"Deleting expired or empty room: {room_id}")

        outcomes = await asyncio.gather(
            *(self.backend.delete_room(room_id) for room_id in expired),
            return_exceptions=True,
        )
        result = SweepResult()
        for room_id, outcome in zip(expired, outcomes):
            if isinstance(outcome, Exception):
                result.failed_count += 1
                logger.error(f"Failed to delete room {room_id}: {outcome}")
            elif outcome:
                result.deleted_count += 1
            else:
                logger.debug(f"Room {room_id} was already gone")

        logger.info(f"Deleted {result.deleted_count} rooms ({result.failed_count} failed, {len(records)} scanned)")
        return result
