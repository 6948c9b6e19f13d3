"""
File-based blob store.

Blobs live under ``blobs/<sha[:2]>/<sha>`` where ``sha`` is the SHA-256 of
the object key, with a ``<sha>.meta.json`` sidecar holding the key, size,
content headers and etag. A blob is visible (to get and list) only while
its sidecar exists: puts write the data before the sidecar, deletes remove
the sidecar before the data. Writes go through a temp file and
``os.replace`` so readers never see a torn file.
"""

from __future__ import annotations

import hashlib
import os
from pathlib import Path

import orjson

from oc.exceptions import TransientStoreError
from oc.logging import get_logger
from oc.stores.base import BlobStore
from oc.types import BlobInfo, Page, StoredBlob

logger = get_logger(__name__)

SIDECAR_SUFFIX = ".meta.json"


def _atomic_write(path: Path, content: bytes) -> None:
    tmp_path = path.with_name(f".{path.name}.{os.getpid()}.tmp")
    tmp_path.write_bytes(content)
    os.replace(tmp_path, path)


class FileBlobStore(BlobStore):
    """Blob store on the local file system."""

    def __init__(self, blobs_dir: str | Path) -> None:
        self.blobs_dir = Path(blobs_dir)

    def init(self) -> None:
        self.blobs_dir.mkdir(parents=True, exist_ok=True)

    @staticmethod
    def _hash_key(key: str) -> str:
        return hashlib.sha256(key.encode("utf-8")).hexdigest()

    def _data_path(self, key_hash: str) -> Path:
        """Use first 2 chars as subdirectory for better filesystem performance."""
        return self.blobs_dir / key_hash[:2] / key_hash

    def _sidecar_path(self, key_hash: str) -> Path:
        return self.blobs_dir / key_hash[:2] / f"{key_hash}{SIDECAR_SUFFIX}"

    def _error(self, operation: str, key: str | None, exc: Exception) -> TransientStoreError:
        return TransientStoreError(
            f"Blob store {operation} failed: {exc}",
            context={"store": "blob", "operation": operation, "key": key},
        )

    async def get(self, key: str) -> StoredBlob | None:
        key_hash = self._hash_key(key)
        try:
            sidecar = orjson.loads(self._sidecar_path(key_hash).read_bytes())
            data = self._data_path(key_hash).read_bytes()
        except FileNotFoundError:
            return None
        except (OSError, orjson.JSONDecodeError) as e:
            raise self._error("get", key, e) from e

        return StoredBlob(
            key=key,
            data=data,
            metadata=sidecar.get("metadata", {}),
            etag=sidecar.get("etag", ""),
        )

    async def put(
        self, key: str, data: bytes, metadata: dict[str, str] | None = None
    ) -> StoredBlob:
        key_hash = self._hash_key(key)
        data_path = self._data_path(key_hash)
        blob = StoredBlob(
            key=key,
            data=bytes(data),
            metadata=dict(metadata or {}),
            etag=hashlib.md5(data).hexdigest(),
        )
        sidecar = {
            "key": key,
            "size": blob.size,
            "metadata": blob.metadata,
            "etag": blob.etag,
        }
        try:
            data_path.parent.mkdir(parents=True, exist_ok=True)
            _atomic_write(data_path, blob.data)
            _atomic_write(self._sidecar_path(key_hash), orjson.dumps(sidecar))
        except OSError as e:
            raise self._error("put", key, e) from e

        logger.debug("Stored blob", key=key, size=blob.size)
        return blob

    async def delete(self, key: str) -> None:
        key_hash = self._hash_key(key)
        try:
            self._sidecar_path(key_hash).unlink(missing_ok=True)
            self._data_path(key_hash).unlink(missing_ok=True)
        except OSError as e:
            raise self._error("delete", key, e) from e

    async def list(self, cursor: str | None = None, limit: int = 1000) -> Page[BlobInfo]:
        """List blobs ordered by key hash; the cursor is the last hash returned."""
        try:
            hashes = sorted(
                p.name[: -len(SIDECAR_SUFFIX)]
                for p in self.blobs_dir.glob(f"*/*{SIDECAR_SUFFIX}")
            )
        except OSError as e:
            raise self._error("list", None, e) from e

        if cursor is not None:
            hashes = [h for h in hashes if h > cursor]
        chunk = hashes[:limit]

        items: list[BlobInfo] = []
        for key_hash in chunk:
            try:
                sidecar = orjson.loads(self._sidecar_path(key_hash).read_bytes())
                info = BlobInfo(key=sidecar["key"], size=int(sidecar["size"]))
            except FileNotFoundError:
                # Deleted between the directory scan and the read.
                continue
            except (OSError, orjson.JSONDecodeError, KeyError, TypeError, ValueError) as e:
                raise self._error("list", None, e) from e
            items.append(info)

        next_cursor = chunk[-1] if chunk and len(hashes) > limit else None
        return Page(items=items, cursor=next_cursor)
