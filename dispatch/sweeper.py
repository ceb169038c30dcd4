import asyncio
from collections.abc import Awaitable, Callable
from datetime import datetime

import structlog

from dispatch.database import InMemoryKeyValueDatabase
from dispatch.registry import CallRegistry, as_utc

logger = structlog.get_logger(__name__)

NowFn = Callable[[], datetime]
SleepFn = Callable[[float], Awaitable[None]]


class ExpirationSweeper:
    """
    Moves open calls past their deadline to `expired`.

    The sweep is only a cleanup pass: claims and bid acceptance re-check
    the deadline themselves, so a missed tick never lets a late claim in.
    """

    def __init__(
        self,
        db: InMemoryKeyValueDatabase,
        registry: CallRegistry,
        *,
        interval_seconds: float,
        now_fn: NowFn,
        sleep_fn: SleepFn = asyncio.sleep,
    ) -> None:
        self.db = db
        self.registry = registry
        self.interval_seconds = interval_seconds
        self.now_fn = now_fn
        self.sleep_fn = sleep_fn
        self.ticks = 0

    def sweep(self) -> list[str]:
        now = as_utc(self.now_fn())
        expired = []
        for call in self.db.calls():
            if call.is_open and now > call.expires_at and self.registry.expire_if_due(call):
                expired.append(call.id)
        if expired:
            logger.info("sweep_expired_calls", count=len(expired), call_ids=expired)
        return expired

    async def run(self, stop_event: asyncio.Event | None = None) -> None:
        stop_event = stop_event or asyncio.Event()
        logger.info("sweeper_started", interval_seconds=self.interval_seconds)
        try:
            while not stop_event.is_set():
                try:
                    self.sweep()
                except Exception:
                    # retried on the next tick
                    logger.exception("sweep_failed")
                self.ticks += 1
                await self.sleep_fn(self.interval_seconds)
        except asyncio.CancelledError:
            logger.info("sweeper_cancelled")
            raise
        logger.info("sweeper_stopped")
