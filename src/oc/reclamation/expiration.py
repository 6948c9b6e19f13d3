"""
Time-to-live expiration.

Deletes every tracked key whose last access is older than the configured
maximum idle time, or whose timestamp cannot be parsed. Keys that pass are
returned as the survivor set, paired with the timestamp already read, for
the size-bound evictor.
"""

from __future__ import annotations

from contextlib import aclosing
from dataclasses import dataclass, field

from oc.exceptions import CycleFatalError, StoreError
from oc.logging import get_logger
from oc.reclamation.deletion import EntryDeleter
from oc.tracker import AccessTracker
from oc.types import Anomaly, AnomalyKind, KeyFailure, Phase, PhaseReport, TrackedKey

logger = get_logger(__name__)

# Stale keys that survive because expiration is disabled sort before every
# real timestamp, so the evictor removes them first.
STALE_TIMESTAMP = 0


@dataclass
class ExpirationResult:
    """Keys that survived expiration and keys the sweep already handled."""

    survivors: dict[str, int] = field(default_factory=dict)
    handled: set[str] = field(default_factory=set)


class ExpirationSweep:
    """Deletes keys idle for longer than ``max_idle_ms``.

    A ``max_idle_ms`` of zero or less disables expiration: the sweep still
    lists tracked keys so the evictor gets its survivor set, but deletes
    nothing.
    """

    def __init__(
        self,
        tracker: AccessTracker,
        max_idle_ms: int,
        batch_size: int = 100,
    ) -> None:
        self.tracker = tracker
        self.max_idle_ms = max_idle_ms
        self.batch_size = batch_size

    @property
    def enabled(self) -> bool:
        return self.max_idle_ms > 0

    def is_expired(self, tracked: TrackedKey, now: int) -> bool:
        if tracked.last_accessed_at is None:
            return True
        return now - tracked.last_accessed_at > self.max_idle_ms

    async def run(
        self, now: int, deleter: EntryDeleter, report: PhaseReport
    ) -> ExpirationResult:
        """Run one expiration pass.

        Args:
            now: Current time in milliseconds since the epoch.
            deleter: Cycle-scoped deleter.
            report: Phase report to fill in.

        Returns:
            Survivors and handled keys.

        Raises:
            CycleFatalError: If the tracked keys cannot be listed. Deletions
                already decided are still carried out first.
        """
        result = ExpirationResult()
        report.skipped = not self.enabled
        pending: list[str] = []

        def on_read_error(key: str, error: StoreError) -> None:
            result.handled.add(key)
            report.failures.append(KeyFailure(key, Phase.EXPIRATION, "read_index", str(error)))

        fatal: StoreError | None = None
        try:
            async with aclosing(
                self.tracker.list_tracked(on_read_error=on_read_error)
            ) as tracked_keys:
                async for tracked in tracked_keys:
                    if deleter.deadline.expired():
                        break
                    report.examined += 1

                    if tracked.stale:
                        report.anomalies.append(
                            Anomaly(AnomalyKind.UNPARSABLE_TIMESTAMP, tracked.key)
                        )

                    if not self.enabled:
                        result.survivors[tracked.key] = (
                            tracked.last_accessed_at
                            if tracked.last_accessed_at is not None
                            else STALE_TIMESTAMP
                        )
                        continue

                    if self.is_expired(tracked, now):
                        result.handled.add(tracked.key)
                        pending.append(tracked.key)
                        if len(pending) >= self.batch_size:
                            await self._flush(pending, deleter, report)
                            pending = []
                    else:
                        result.survivors[tracked.key] = tracked.last_accessed_at
        except StoreError as e:
            fatal = e

        if pending:
            await self._flush(pending, deleter, report)

        if fatal is not None:
            raise CycleFatalError(
                f"Cannot list tracked keys: {fatal}",
                context={"phase": Phase.EXPIRATION.value},
            ) from fatal

        logger.info(
            "Expiration pass finished",
            examined=report.examined,
            expired=len(report.deleted),
            survivors=len(result.survivors),
            failures=len(report.failures),
        )
        return result

    async def _flush(
        self, keys: list[str], deleter: EntryDeleter, report: PhaseReport
    ) -> None:
        for outcome in await deleter.delete_many(keys, Phase.EXPIRATION):
            if not outcome.started:
                report.deferred.append(outcome.key)
            elif outcome.failure is not None:
                report.failures.append(outcome.failure)
            else:
                report.deleted.append(outcome.key)
