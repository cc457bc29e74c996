import asyncio
from typing import Awaitable, Callable, Dict, Optional

from logging_config import get_logger

logger = get_logger(__name__)


class RecurringTask:
    """Runs an async callback every ``interval`` seconds until cancelled."""

    def __init__(self, name: str, interval: float, callback: Callable[[], Awaitable]):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.name = name
        self.interval = interval
        self.callback = callback
        self.runs = 0
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self):
        if not self.running:
            self._task = asyncio.create_task(self._loop())
            logger.info(f"Scheduled task '{self.name}' every {self.interval}s")

    async def _loop(self):
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.callback()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Scheduled task '{self.name}' failed: {e}", exc_info=True)
            self.runs += 1

    async def cancel(self):
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.debug(f"Cancelled scheduled task '{self.name}'")


class Scheduler:
    def __init__(self):
        self._tasks: Dict[str, RecurringTask] = {}

    def every(self, name: str, interval: float, callback: Callable[[], Awaitable]) -> RecurringTask:
        if name in self._tasks:
            raise ValueError(f"Task '{name}' is already scheduled")
        task = RecurringTask(name, interval, callback)
        self._tasks[name] = task
        task.start()
        return task

    def get(self, name: str) -> Optional[RecurringTask]:
        return self._tasks.get(name)

    async def shutdown(self):
        for task in list(self._tasks.values()):
            await task.cancel()
        self._tasks.clear()
