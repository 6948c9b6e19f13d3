"""
Wiring of stores and services from settings.

Shared by the gateway and the CLI so both operate on the same on-disk
cache: blob files under ``CACHE_DIR/blobs`` and the index database at
``CACHE_DIR/index.db``.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator

from oc.config import Settings
from oc.reclamation.coordinator import ReclamationCoordinator
from oc.stores.base import BlobStore, CredentialDirectory, IndexCredentialDirectory, IndexStore
from oc.stores.file_store import FileBlobStore
from oc.stores.sqlite_index import SQLiteIndexStore
from oc.tracker import AccessTracker


@dataclass
class CacheServices:
    """Stores plus the services built on top of them."""

    blobs: BlobStore
    index: IndexStore
    tracker: AccessTracker
    credentials: CredentialDirectory
    coordinator: ReclamationCoordinator

    @classmethod
    def build(
        cls,
        settings: Settings,
        blobs: BlobStore,
        index: IndexStore,
        credentials: CredentialDirectory | None = None,
    ) -> CacheServices:
        tracker = AccessTracker(index, page_size=settings.LIST_PAGE_SIZE)
        return cls(
            blobs=blobs,
            index=index,
            tracker=tracker,
            credentials=credentials or IndexCredentialDirectory(index),
            coordinator=ReclamationCoordinator.from_settings(settings, blobs, tracker),
        )

    async def close(self) -> None:
        await self.blobs.close()
        await self.index.close()


@asynccontextmanager
async def open_services(settings: Settings) -> AsyncIterator[CacheServices]:
    """Open the file blob store and SQLite index configured in ``settings``."""
    settings.ensure_directories()
    blobs = FileBlobStore(settings.blobs_dir)
    blobs.init()
    index = SQLiteIndexStore(settings.index_db_path)
    await index.init()

    services = CacheServices.build(settings, blobs, index)
    try:
        yield services
    finally:
        await services.close()
