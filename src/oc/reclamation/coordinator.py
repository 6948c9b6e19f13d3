"""
Reclamation cycle orchestration.

One cycle runs the expiration pass to completion, then the size-bound
eviction pass over its survivors. The occupancy snapshot is only taken
after every expiration delete has finished, so it never counts an entry
expiration already removed. Per-key failures are collected in the cycle
report; only an unreadable listing aborts the cycle.
"""

from __future__ import annotations

from oc.config import Settings
from oc.exceptions import CycleFatalError
from oc.inventory import SizeInventory
from oc.logging import get_logger, log_context
from oc.reclamation.deletion import Deadline, EntryDeleter
from oc.reclamation.eviction import SizeBoundEvictor
from oc.reclamation.expiration import ExpirationSweep
from oc.stores.base import BlobStore
from oc.tracker import AccessTracker
from oc.types import CycleReport, CycleStatus, Phase, generate_id, now_ms, utc_now

logger = get_logger(__name__)


class ReclamationCoordinator:
    """Runs reclamation cycles against a blob store and an access tracker.

    The coordinator holds configuration only; all per-cycle state lives in
    ``run_cycle``. Callers are responsible for not running two cycles at
    once (see ReclamationScheduler).
    """

    def __init__(
        self,
        blobs: BlobStore,
        tracker: AccessTracker,
        max_idle_ms: int,
        max_size_bytes: int,
        delete_concurrency: int = 8,
        batch_size: int = 100,
        cycle_timeout: float | None = None,
        page_size: int = 1000,
    ) -> None:
        self.blobs = blobs
        self.tracker = tracker
        self.delete_concurrency = delete_concurrency
        self.cycle_timeout = cycle_timeout
        self.expiration = ExpirationSweep(tracker, max_idle_ms, batch_size=batch_size)
        self.eviction = SizeBoundEvictor(SizeInventory(blobs, page_size), max_size_bytes)

    @classmethod
    def from_settings(
        cls, settings: Settings, blobs: BlobStore, tracker: AccessTracker
    ) -> ReclamationCoordinator:
        return cls(
            blobs=blobs,
            tracker=tracker,
            max_idle_ms=settings.MAX_IDLE_MS,
            max_size_bytes=settings.MAX_SIZE_BYTES,
            delete_concurrency=settings.DELETE_CONCURRENCY,
            batch_size=settings.DELETE_BATCH_SIZE,
            cycle_timeout=settings.cycle_timeout,
            page_size=settings.LIST_PAGE_SIZE,
        )

    async def run_cycle(
        self, now: int | None = None, deadline: Deadline | None = None
    ) -> CycleReport:
        """Run expiration then eviction once.

        Args:
            now: Current time in milliseconds since the epoch. Defaults to
                the wall clock.
            deadline: Overrides the configured cycle timeout.

        Returns:
            The cycle report. Never raises for store failures; a fatal
            listing failure is reported with status FAILED.
        """
        if now is None:
            now = now_ms()
        if deadline is None:
            deadline = Deadline(self.cycle_timeout)

        report = CycleReport(cycle_id=generate_id("cycle"), now=now)
        deleter = EntryDeleter(
            self.blobs, self.tracker, concurrency=self.delete_concurrency, deadline=deadline
        )

        with log_context(cycle_id=report.cycle_id):
            logger.info("Reclamation cycle started", now=now)
            try:
                with log_context(phase=Phase.EXPIRATION.value):
                    result = await self.expiration.run(now, deleter, report.expiration)

                if deadline.expired():
                    report.eviction.skipped = True
                else:
                    with log_context(phase=Phase.EVICTION.value):
                        await self.eviction.run(
                            result.survivors,
                            deleter,
                            report.eviction,
                            handled=result.handled,
                        )
            except CycleFatalError as e:
                report.status = CycleStatus.FAILED
                report.error = str(e)
                logger.error("Reclamation cycle aborted", error=str(e))
            else:
                if deadline.expired() or report.expiration.deferred or report.eviction.deferred:
                    report.status = CycleStatus.PARTIAL
                    logger.warning(
                        "Reclamation cycle hit its deadline, finished partially",
                        deferred=len(report.expiration.deferred) + len(report.eviction.deferred),
                    )

            report.completed_at = utc_now()
            logger.info(
                "Reclamation cycle finished",
                status=report.status.value,
                deleted=len(report.deleted),
                failures=len(report.failures),
                anomalies=len(report.anomalies),
            )

        return report
