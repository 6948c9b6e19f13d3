"""
Access tracking.

Keeps the last-access timestamp of every cached object in the index store
under ``LAST_USED_<key>`` as a decimal string of milliseconds since the
epoch. The tracker has no policy of its own: the gateway writes through
it on every successful GET/PUT and the reclamation engine reads and
deletes through it.
"""

from __future__ import annotations

from typing import AsyncIterator, Callable

from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from oc.exceptions import StoreError, TransientStoreError
from oc.logging import get_logger
from oc.stores.base import IndexStore, iter_index_keys
from oc.types import LAST_USED_PREFIX, TrackedKey, index_key

logger = get_logger(__name__)


def parse_timestamp(value: str) -> int | None:
    """Parse a stored timestamp, returning None if it is not an integer."""
    try:
        return int(value.strip())
    except ValueError:
        return None


class AccessTracker:
    """Reads and writes last-access timestamps in the index store."""

    def __init__(self, index: IndexStore, page_size: int = 1000) -> None:
        self.index = index
        self.page_size = page_size

    @retry(
        retry=retry_if_exception_type(TransientStoreError),
        wait=wait_exponential(multiplier=0.05, min=0.05, max=1),
        stop=stop_after_attempt(3),
        reraise=True,
    )
    async def _put_timestamp(self, key: str, now: int) -> None:
        await self.index.put(index_key(key), str(now))

    async def record_access(self, key: str, now: int) -> bool:
        """Set the last-access time of ``key`` to ``now``.

        Best-effort: a failure is logged and reported through the return
        value, never raised. A lost update only makes the key look older
        to the eviction policy.

        Returns:
            True if the timestamp was written.
        """
        try:
            await self._put_timestamp(key, now)
        except StoreError as e:
            logger.warning("Failed to record access", key=key, error=str(e))
            return False
        return True

    async def get_last_access(self, key: str) -> int | None:
        value = await self.index.get(index_key(key))
        return parse_timestamp(value) if value is not None else None

    async def list_tracked(
        self,
        prefix: str = LAST_USED_PREFIX,
        on_read_error: Callable[[str, StoreError], None] | None = None,
    ) -> AsyncIterator[TrackedKey]:
        """Iterate over every tracked key with its timestamp.

        Pages are fetched lazily. A value that does not parse as an integer
        yields ``last_accessed_at=None`` so the key is treated as stale. A
        key whose value is gone by the time it is read was deleted
        concurrently and is skipped. A failed read of one value skips that
        key and is passed to ``on_read_error``; a failed page listing
        propagates.

        Args:
            prefix: Index key prefix of timestamp entries.
            on_read_error: Called with (key, error) when a value read fails.
        """
        async for name in iter_index_keys(self.index, prefix, self.page_size):
            key = name[len(prefix):]
            try:
                value = await self.index.get(name)
            except StoreError as e:
                logger.warning("Failed to read timestamp", key=key, error=str(e))
                if on_read_error is not None:
                    on_read_error(key, e)
                continue

            if value is None:
                logger.debug("Tracked key vanished during listing", key=key)
                continue

            yield TrackedKey(key=key, last_accessed_at=parse_timestamp(value))

    async def delete_tracked(self, key: str) -> None:
        """Delete the timestamp of ``key``. Absent keys are not an error."""
        await self.index.delete(index_key(key))
