import asyncio
from typing import Any, Awaitable, Callable, Optional

from loguru import logger

from ..models import JobStatus

# Floor for the tick cadence when the submission delay is zero.
MIN_TICK_INTERVAL = 0.1


class TickCoordinator:
    """Drives ``orchestrator.tick()`` until the job settles or a stop is requested."""

    def __init__(
        self,
        orchestrator,
        interval: Optional[float] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.orchestrator = orchestrator
        self.interval = interval
        self._sleep = sleep
        self.stop_event = asyncio.Event()
        self.ticks = 0

    def _interval(self) -> float:
        if self.interval is not None:
            return self.interval
        return max(MIN_TICK_INTERVAL, self.orchestrator.tick_interval)

    async def run(self) -> JobStatus:
        """Tick until the job settles; a stop request pauses a running job."""
        while True:
            if self.stop_event.is_set():
                self._pause_for_stop()
                break
            await self.orchestrator.tick()
            self.ticks += 1
            if self.orchestrator.is_settled:
                break
            await self._sleep(self._interval())
        status = self.orchestrator.status
        logger.info(f"[tick] loop finished after {self.ticks} ticks status={status.value}")
        return status

    def _pause_for_stop(self) -> None:
        orchestrator = self.orchestrator
        if orchestrator.status in (JobStatus.ANALYZING_CHUNKS, JobStatus.PAUSED_RATE_LIMITED):
            logger.info("[tick] stop requested; pausing job and saving progress")
            orchestrator.pause()
        elif orchestrator.status in (JobStatus.PREPARING, JobStatus.GENERATING_FINAL_REPORT):
            logger.info("[tick] stop requested; cancelling job and keeping progress")
            orchestrator.cancel(clear_progress=False)

    def request_stop(self):
        """Request a graceful shutdown."""
        self.stop_event.set()
