"""
Entry deletion shared by both reclamation policies.

Deleting an entry removes the blob first and the index entry only once the
blob delete succeeded, mirroring creation order (blob written before its
timestamp). A failed blob delete therefore leaves the timestamp in place
and the pair is retried together on the next cycle. Both deletes are
idempotent, so a half-finished deletion is always safe to repeat. A
timestamp left behind without its blob is purged on its own once a fresh
read confirms the blob is absent.

Deletions of distinct keys run concurrently up to a semaphore limit. Once
the cycle deadline has passed no new deletion starts; deletions already
started run to completion.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Sequence

from oc.exceptions import StoreError
from oc.logging import get_logger
from oc.stores.base import BlobStore
from oc.tracker import AccessTracker
from oc.types import KeyFailure, Phase

logger = get_logger(__name__)


class Deadline:
    """Point in time after which no new deletion may start.

    Args:
        seconds: Budget from now, or None for no deadline.
        clock: Monotonic clock, injectable for tests.
    """

    def __init__(
        self,
        seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._clock = clock
        self._expires_at = clock() + seconds if seconds is not None else None

    @classmethod
    def never(cls) -> Deadline:
        return cls(None)

    def expired(self) -> bool:
        return self._expires_at is not None and self._clock() >= self._expires_at


@dataclass(frozen=True)
class DeletionOutcome:
    """Result of deleting one entry."""

    key: str
    started: bool = True
    failure: KeyFailure | None = None
    blob_present: bool = False  # orphan purge found the blob after all

    @property
    def deleted(self) -> bool:
        return self.started and self.failure is None and not self.blob_present


class EntryDeleter:
    """Deletes blob + timestamp pairs with bounded concurrency.

    One deleter is created per cycle; its semaphore and deadline are shared
    by the expiration and eviction phases of that cycle.
    """

    def __init__(
        self,
        blobs: BlobStore,
        tracker: AccessTracker,
        concurrency: int = 8,
        deadline: Deadline | None = None,
    ) -> None:
        self.blobs = blobs
        self.tracker = tracker
        self.deadline = deadline or Deadline.never()
        self._semaphore = asyncio.Semaphore(concurrency)

    async def delete_entry(self, key: str, phase: Phase) -> DeletionOutcome:
        """Delete the blob, then the timestamp if the blob delete succeeded."""
        try:
            await self.blobs.delete(key)
        except StoreError as e:
            logger.warning("Blob delete failed, keeping timestamp", key=key, error=str(e))
            return DeletionOutcome(key, failure=KeyFailure(key, phase, "delete_blob", str(e)))

        try:
            await self.tracker.delete_tracked(key)
        except StoreError as e:
            # The blob is gone; the dangling timestamp is purged by the next
            # eviction pass or expires with its age.
            logger.warning("Timestamp delete failed after blob delete", key=key, error=str(e))
            return DeletionOutcome(key, failure=KeyFailure(key, phase, "delete_index", str(e)))

        logger.debug("Deleted entry", key=key)
        return DeletionOutcome(key)

    async def purge_orphan(self, key: str, phase: Phase) -> DeletionOutcome:
        """Delete the timestamp of a key whose blob is absent.

        The blob is read first: a listing can miss a blob written after it
        was taken, and such a key keeps its timestamp.
        """
        try:
            blob = await self.blobs.get(key)
        except StoreError as e:
            logger.warning("Blob read failed, keeping timestamp", key=key, error=str(e))
            return DeletionOutcome(key, failure=KeyFailure(key, phase, "read_blob", str(e)))

        if blob is not None:
            return DeletionOutcome(key, blob_present=True)

        try:
            await self.tracker.delete_tracked(key)
        except StoreError as e:
            logger.warning("Orphaned timestamp delete failed", key=key, error=str(e))
            return DeletionOutcome(key, failure=KeyFailure(key, phase, "delete_index", str(e)))

        logger.debug("Purged orphaned timestamp", key=key)
        return DeletionOutcome(key)

    async def delete_many(self, keys: Sequence[str], phase: Phase) -> list[DeletionOutcome]:
        """Delete entries concurrently.

        Returns:
            One outcome per key, in the order given. Keys that could not
            start before the deadline have ``started=False``.
        """
        return await self._run_many(keys, phase, self.delete_entry)

    async def purge_orphans(self, keys: Sequence[str], phase: Phase) -> list[DeletionOutcome]:
        """Purge orphaned timestamps concurrently, same contract as delete_many."""
        return await self._run_many(keys, phase, self.purge_orphan)

    async def _run_many(
        self,
        keys: Sequence[str],
        phase: Phase,
        action: Callable[[str, Phase], Awaitable[DeletionOutcome]],
    ) -> list[DeletionOutcome]:
        async def run_with_semaphore(key: str) -> DeletionOutcome:
            async with self._semaphore:
                if self.deadline.expired():
                    return DeletionOutcome(key, started=False)
                return await action(key, phase)

        results = await asyncio.gather(
            *[run_with_semaphore(k) for k in keys],
            return_exceptions=True,
        )

        outcomes: list[DeletionOutcome] = []
        for key, result in zip(keys, results):
            if isinstance(result, BaseException):
                if isinstance(result, asyncio.CancelledError):
                    raise result
                logger.error("Unexpected error deleting entry", key=key, error=repr(result))
                outcomes.append(
                    DeletionOutcome(key, failure=KeyFailure(key, phase, "delete", repr(result)))
                )
            else:
                outcomes.append(result)
        return outcomes
