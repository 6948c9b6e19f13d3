"""
Blob store occupancy.

Builds one complete snapshot of stored sizes per reclamation cycle by
walking every page of the blob listing.
"""

from __future__ import annotations

from oc.logging import get_logger
from oc.stores.base import BlobStore, iter_blobs
from oc.types import Occupancy

logger = get_logger(__name__)


class SizeInventory:
    """Computes total occupied bytes and the per-key size map."""

    def __init__(self, blobs: BlobStore, page_size: int = 1000) -> None:
        self.blobs = blobs
        self.page_size = page_size

    async def compute_occupancy(self) -> Occupancy:
        """Enumerate the whole blob store once.

        Raises:
            StoreError: If any page of the listing cannot be fetched.
        """
        occupancy = Occupancy()
        async for info in iter_blobs(self.blobs, self.page_size):
            previous = occupancy.sizes.get(info.key)
            if previous is not None:
                # Listings are not snapshots; a key may show up twice if it
                # was rewritten while pages were being fetched.
                occupancy.total_bytes -= previous
            occupancy.sizes[info.key] = info.size
            occupancy.total_bytes += info.size

        logger.debug(
            "Computed occupancy",
            blobs=occupancy.blob_count,
            total_bytes=occupancy.total_bytes,
        )
        return occupancy
