"""
Store interfaces for the object cache.

The reclamation engine only depends on these contracts:
- BlobStore: byte objects by key, reports sizes when listing
- IndexStore: small string values by key, listable by prefix
- CredentialDirectory: username -> password lookup for the gateway

Every single-key operation is atomic, nothing is transactional across
keys. Deletes are idempotent: deleting an absent key succeeds. Listings
are paginated; iter_blobs() and iter_index_keys() follow cursors lazily.
Implementations raise StoreError (usually TransientStoreError) when a call
fails.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import AsyncIterator

from oc.types import USER_PREFIX, BlobInfo, Page, StoredBlob


class BlobStore(ABC):
    """Abstract interface for blob storage."""

    @abstractmethod
    async def get(self, key: str) -> StoredBlob | None:
        """Get a blob, or None if absent."""
        ...

    @abstractmethod
    async def put(
        self, key: str, data: bytes, metadata: dict[str, str] | None = None
    ) -> StoredBlob:
        """Store a blob with its content headers, replacing any previous one."""
        ...

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Delete a blob. Deleting an absent key is not an error."""
        ...

    @abstractmethod
    async def list(self, cursor: str | None = None, limit: int = 1000) -> Page[BlobInfo]:
        """List one page of blobs in a stable order."""
        ...

    async def close(self) -> None:
        """Release resources held by the store."""
        return None


class IndexStore(ABC):
    """Abstract interface for the string key-value index."""

    @abstractmethod
    async def get(self, key: str) -> str | None:
        """Get a value, or None if absent."""
        ...

    @abstractmethod
    async def put(self, key: str, value: str) -> None:
        """Set a value."""
        ...

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Delete a value. Deleting an absent key is not an error."""
        ...

    @abstractmethod
    async def list_keys(
        self, prefix: str = "", cursor: str | None = None, limit: int = 1000
    ) -> Page[str]:
        """List one page of keys starting with ``prefix``, in key order."""
        ...

    async def count(self, prefix: str = "") -> int:
        """Count keys starting with ``prefix`` by walking the listing."""
        total = 0
        async for _ in iter_index_keys(self, prefix):
            total += 1
        return total

    async def close(self) -> None:
        """Release resources held by the store."""
        return None


class CredentialDirectory(ABC):
    """Looks up the expected password for a username."""

    @abstractmethod
    async def lookup_password(self, username: str) -> str | None:
        ...


class IndexCredentialDirectory(CredentialDirectory):
    """Credentials kept in the index store as ``USER_<name>`` -> password."""

    def __init__(self, index: IndexStore) -> None:
        self.index = index

    async def lookup_password(self, username: str) -> str | None:
        return await self.index.get(USER_PREFIX + username)

    async def set_password(self, username: str, password: str) -> None:
        await self.index.put(USER_PREFIX + username, password)

    async def remove(self, username: str) -> None:
        await self.index.delete(USER_PREFIX + username)


async def iter_blobs(store: BlobStore, page_size: int = 1000) -> AsyncIterator[BlobInfo]:
    """Iterate over every blob in the store, page by page."""
    cursor: str | None = None
    while True:
        page = await store.list(cursor=cursor, limit=page_size)
        for info in page.items:
            yield info
        if page.cursor is None:
            return
        cursor = page.cursor


async def iter_index_keys(
    index: IndexStore, prefix: str, page_size: int = 1000
) -> AsyncIterator[str]:
    """Iterate over every index key with ``prefix``, page by page."""
    cursor: str | None = None
    while True:
        page = await index.list_keys(prefix=prefix, cursor=cursor, limit=page_size)
        for key in page.items:
            yield key
        if page.cursor is None:
            return
        cursor = page.cursor
