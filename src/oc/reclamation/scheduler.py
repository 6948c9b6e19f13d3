"""
Periodic reclamation scheduler.

Runs one cycle per interval on the event loop. Cycles never overlap: a
trigger that arrives while a cycle is in flight is skipped. A failed cycle
is only retried at the next tick.
"""

from __future__ import annotations

import asyncio

from oc.logging import get_logger, log_context
from oc.reclamation.coordinator import ReclamationCoordinator
from oc.types import CycleReport, CycleStatus

logger = get_logger(__name__)


class ReclamationScheduler:
    """Background task calling ``coordinator.run_cycle`` every interval."""

    def __init__(self, coordinator: ReclamationCoordinator, interval_seconds: float) -> None:
        self.coordinator = coordinator
        self.interval_seconds = interval_seconds
        self.last_report: CycleReport | None = None
        self._lock = asyncio.Lock()
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self, now: int | None = None) -> CycleReport | None:
        """Run a cycle unless one is already in flight.

        Returns:
            The cycle report, or None if the trigger was skipped.
        """
        if self._lock.locked():
            logger.warning("Reclamation cycle still running, skipping trigger")
            return None

        async with self._lock:
            report = await self.coordinator.run_cycle(now)
        self.last_report = report
        return report

    async def _loop(self) -> None:
        with log_context(component="scheduler"):
            while True:
                await asyncio.sleep(self.interval_seconds)
                try:
                    report = await self.run_once()
                except Exception:
                    logger.exception(
                        "Scheduled cycle crashed, retrying at next interval",
                        interval_seconds=self.interval_seconds,
                    )
                    continue
                if report is not None and report.status == CycleStatus.FAILED:
                    logger.error(
                        "Scheduled cycle failed, retrying at next interval",
                        error=report.error,
                        interval_seconds=self.interval_seconds,
                    )

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop())
        logger.info("Reclamation scheduler started", interval_seconds=self.interval_seconds)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Reclamation scheduler stopped")
