"""
In-memory stores.

Dict-backed BlobStore and IndexStore with the same pagination behaviour
as the persistent backends: pages are returned in key order and the
cursor is the last key of the previous page. Used by tests and for
running the gateway without touching disk.
"""

from __future__ import annotations

import hashlib
from bisect import bisect_right

from oc.stores.base import BlobStore, IndexStore
from oc.types import BlobInfo, Page, StoredBlob


def _page_of_keys(keys: list[str], cursor: str | None, limit: int) -> Page[str]:
    start = bisect_right(keys, cursor) if cursor is not None else 0
    chunk = keys[start : start + limit]
    next_cursor = chunk[-1] if chunk and start + limit < len(keys) else None
    return Page(items=chunk, cursor=next_cursor)


class InMemoryBlobStore(BlobStore):
    """Blob store held in a dict."""

    def __init__(self) -> None:
        self._blobs: dict[str, StoredBlob] = {}

    async def get(self, key: str) -> StoredBlob | None:
        return self._blobs.get(key)

    async def put(
        self, key: str, data: bytes, metadata: dict[str, str] | None = None
    ) -> StoredBlob:
        blob = StoredBlob(
            key=key,
            data=bytes(data),
            metadata=dict(metadata or {}),
            etag=hashlib.md5(data).hexdigest(),
        )
        self._blobs[key] = blob
        return blob

    async def delete(self, key: str) -> None:
        self._blobs.pop(key, None)

    async def list(self, cursor: str | None = None, limit: int = 1000) -> Page[BlobInfo]:
        page = _page_of_keys(sorted(self._blobs), cursor, limit)
        return Page(
            items=[BlobInfo(key, self._blobs[key].size) for key in page.items],
            cursor=page.cursor,
        )

    def __contains__(self, key: str) -> bool:
        return key in self._blobs

    def __len__(self) -> int:
        return len(self._blobs)


class InMemoryIndexStore(IndexStore):
    """Index store held in a dict."""

    def __init__(self) -> None:
        self._values: dict[str, str] = {}

    async def get(self, key: str) -> str | None:
        return self._values.get(key)

    async def put(self, key: str, value: str) -> None:
        self._values[key] = value

    async def delete(self, key: str) -> None:
        self._values.pop(key, None)

    async def list_keys(
        self, prefix: str = "", cursor: str | None = None, limit: int = 1000
    ) -> Page[str]:
        keys = sorted(k for k in self._values if k.startswith(prefix))
        return _page_of_keys(keys, cursor, limit)

    def __contains__(self, key: str) -> bool:
        return key in self._values

    def __len__(self) -> int:
        return len(self._values)
