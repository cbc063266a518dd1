import asyncio
from typing import Awaitable, Callable, Optional

from backend import RoomRegistry
from logging_config import get_logger

logger = get_logger(__name__)


class PeriodicTask:
    """Runs ``tick`` every ``interval`` seconds until stopped.

    A failing tick is logged and the loop keeps going.
    """

    name = "periodic"

    def __init__(self, interval: float, sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        self.interval = interval
        self._sleep = sleep
        self._task: Optional[asyncio.Task] = None

    async def tick(self) -> None:
        raise NotImplementedError

    async def run(self) -> None:
        logger.info(f"Starting {self.name} task (interval={self.interval}s)")
        try:
            while True:
                await self._sleep(self.interval)
                try:
                    await self.tick()
                except Exception as e:
                    logger.error(f"Error in {self.name} task: {e}", exc_info=True)
        except asyncio.CancelledError:
            logger.info(f"{self.name} task cancelled")
            raise

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run(), name=self.name)
        return self._task

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None


class LifecycleSweeper(PeriodicTask):
    """Expires rooms purely by age; liveness of their members is irrelevant."""

    name = "room-sweeper"

    def __init__(self, registry: RoomRegistry, max_age: float, interval: float, **kwargs):
        super().__init__(interval, **kwargs)
        self.registry = registry
        self.max_age = max_age

    async def tick(self) -> None:
        expired = await self.registry.sweep_expired(self.max_age)
        if expired:
            logger.info(f"Sweep removed {len(expired)} rooms: {', '.join(expired)}")
        else:
            logger.debug("Sweep found no expired rooms")


class StatsReporter(PeriodicTask):
    name = "stats-reporter"

    def __init__(self, registry: RoomRegistry, interval: float, **kwargs):
        super().__init__(interval, **kwargs)
        self.registry = registry

    async def tick(self) -> None:
        stats = self.registry.stats()
        logger.info(
            f"Server stats: rooms={stats.total_rooms} paired={stats.rooms_with_two_peers} "
            f"connections={stats.active_connections} uptime={round(stats.uptime)}s"
        )
