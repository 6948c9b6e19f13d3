"""
Size-bound LRU eviction.

When the blob store holds more than ``max_size_bytes``, survivors of the
expiration pass are deleted oldest access first (ties broken by key) until
the total fits the budget or no candidate is left. Survivors that have no
blob in the listing lose their timestamp once a direct read confirms the
blob is gone, whatever the total.
"""

from __future__ import annotations

from dataclasses import dataclass

from oc.exceptions import CycleFatalError, StoreError
from oc.inventory import SizeInventory
from oc.logging import get_logger
from oc.reclamation.deletion import EntryDeleter
from oc.types import Anomaly, AnomalyKind, Phase, PhaseReport

logger = get_logger(__name__)


@dataclass(frozen=True)
class EvictionCandidate:
    key: str
    last_accessed_at: int
    size: int

    @property
    def sort_key(self) -> tuple[int, str]:
        return (self.last_accessed_at, self.key)


def order_candidates(
    survivors: dict[str, int], sizes: dict[str, int]
) -> tuple[list[EvictionCandidate], list[str]]:
    """Build the LRU-ordered candidate list.

    Returns:
        Candidates sorted by (last access, key), and survivors that have
        no blob in the size map.
    """
    candidates: list[EvictionCandidate] = []
    missing: list[str] = []
    for key, last_accessed_at in survivors.items():
        size = sizes.get(key)
        if size is None:
            missing.append(key)
            continue
        candidates.append(EvictionCandidate(key, last_accessed_at, size))
    candidates.sort(key=lambda c: c.sort_key)
    return candidates, sorted(missing)


class SizeBoundEvictor:
    """Evicts least-recently-used survivors once total size exceeds budget.

    A ``max_size_bytes`` of zero or less disables eviction entirely; no
    inventory is taken.
    """

    def __init__(self, inventory: SizeInventory, max_size_bytes: int) -> None:
        self.inventory = inventory
        self.max_size_bytes = max_size_bytes

    @property
    def enabled(self) -> bool:
        return self.max_size_bytes > 0

    async def run(
        self,
        survivors: dict[str, int],
        deleter: EntryDeleter,
        report: PhaseReport,
        handled: set[str] | None = None,
    ) -> None:
        """Run one eviction pass.

        Args:
            survivors: key -> last access time from the expiration pass.
            deleter: Cycle-scoped deleter.
            report: Phase report to fill in.
            handled: Tracked keys the expiration pass already dealt with;
                blobs outside both sets are reported as untracked.

        Raises:
            CycleFatalError: If the blob store cannot be listed.
        """
        if not self.enabled:
            report.skipped = True
            return

        try:
            occupancy = await self.inventory.compute_occupancy()
        except StoreError as e:
            raise CycleFatalError(
                f"Cannot list blob store: {e}",
                context={"phase": Phase.EVICTION.value},
            ) from e

        total = occupancy.total_bytes
        report.bytes_before = total
        report.bytes_after = total

        handled = handled or set()
        for key in sorted(occupancy.sizes):
            if key not in survivors and key not in handled:
                report.anomalies.append(Anomaly(AnomalyKind.UNTRACKED_BLOB, key))

        candidates, missing = order_candidates(survivors, occupancy.sizes)
        if missing:
            await self._purge_orphans(missing, deleter, report)

        if total <= self.max_size_bytes:
            logger.debug("Within size budget", total_bytes=total, budget=self.max_size_bytes)
            return

        report.examined = len(candidates)

        position = 0
        while total > self.max_size_bytes and position < len(candidates):
            # Smallest LRU prefix that would cover the excess if every delete succeeds.
            excess = total - self.max_size_bytes
            batch: list[EvictionCandidate] = []
            planned = 0
            while position < len(candidates) and planned < excess:
                batch.append(candidates[position])
                planned += candidates[position].size
                position += 1

            outcomes = await deleter.delete_many([c.key for c in batch], Phase.EVICTION)
            deferred = False
            for candidate, outcome in zip(batch, outcomes):
                if not outcome.started:
                    report.deferred.append(candidate.key)
                    deferred = True
                elif outcome.failure is not None:
                    report.failures.append(outcome.failure)
                    if outcome.failure.operation == "delete_index":
                        # The blob is gone; only its timestamp is left to purge.
                        total -= candidate.size
                else:
                    report.deleted.append(candidate.key)
                    total -= candidate.size
            if deferred:
                break

        report.bytes_after = total
        report.over_budget = total > self.max_size_bytes

        if report.over_budget:
            logger.warning(
                "Still over size budget after eviction",
                total_bytes=total,
                budget=self.max_size_bytes,
                failures=len(report.failures),
                deferred=len(report.deferred),
            )
        else:
            logger.info(
                "Eviction pass finished",
                evicted=len(report.deleted),
                bytes_before=report.bytes_before,
                bytes_after=total,
            )

    async def _purge_orphans(
        self, keys: list[str], deleter: EntryDeleter, report: PhaseReport
    ) -> None:
        """Drop timestamps of survivors the listing has no blob for."""
        for key in keys:
            report.anomalies.append(
                Anomaly(AnomalyKind.SURVIVOR_WITHOUT_BLOB, key, "blob missing from listing")
            )

        for outcome in await deleter.purge_orphans(keys, Phase.EVICTION):
            if not outcome.started:
                report.deferred.append(outcome.key)
            elif outcome.failure is not None:
                report.failures.append(outcome.failure)
            elif not outcome.blob_present:
                report.purged.append(outcome.key)

        if report.purged:
            logger.info("Purged orphaned timestamps", purged=len(report.purged))
