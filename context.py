from fastapi import Request

from backend import RedisBackend
from broadcast import BroadcastHub
from constants import MAX_CODE_LENGTH, RETENTION_DAYS, SWEEP_INTERVAL_SECONDS
from scheduler import Scheduler
from sweeper import RetentionSweeper
from synchronizer import RoomSynchronizer
from logging_config import get_logger

logger = get_logger(__name__)

SWEEP_TASK_NAME = "retention-sweep"


class ServiceContext:
    """Owns the store connection, broadcast hub and background schedule for one process."""

    def __init__(self, redis_client=None, retention_days: int = RETENTION_DAYS,
                 sweep_interval: float = SWEEP_INTERVAL_SECONDS, max_code_length: int = MAX_CODE_LENGTH):
        if redis_client is None:
            self.backend = RedisBackend.from_settings()
        else:
            self.backend = RedisBackend(redis_client)
        self.hub = BroadcastHub()
        self.synchronizer = RoomSynchronizer(self.backend, self.hub, max_code_length=max_code_length)
        self.sweeper = RetentionSweeper(self.backend, retention_days=retention_days)
        self.scheduler = Scheduler()
        self.sweep_interval = sweep_interval
        self.is_open = False

    async def open(self):
        await self.backend.ping()
        if self.sweep_interval and self.sweep_interval > 0:
            self.scheduler.every(SWEEP_TASK_NAME, self.sweep_interval, self._scheduled_sweep)
        self.is_open = True
        logger.info("Service context opened")

    async def _scheduled_sweep(self):
        result = await self.sweeper.sweep()
        if not result.ok:
            logger.warning(f"Scheduled sweep finished with errors: {result}")

    async def close(self):
        if not self.is_open:
            return
        await self.scheduler.shutdown()
        await self.synchronizer.drain()
        await self.hub.close()
        await self.backend.close()
        self.is_open = False
        logger.info("Service context closed")


def get_context(request: Request) -> ServiceContext:
    return request.app.state.context
