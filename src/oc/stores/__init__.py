"""
Storage backends for the object cache.

This package provides:
- Store interfaces (base.py): BlobStore, IndexStore, CredentialDirectory
- In-memory stores (memory.py): paginated dict-backed stores for tests
- File blob store (file_store.py): blobs on disk with JSON metadata sidecars
- SQLite index store (sqlite_index.py): aiosqlite-backed key-value index
"""

from oc.stores.base import (
    BlobStore,
    CredentialDirectory,
    IndexCredentialDirectory,
    IndexStore,
    iter_blobs,
    iter_index_keys,
)
from oc.stores.file_store import FileBlobStore
from oc.stores.memory import InMemoryBlobStore, InMemoryIndexStore
from oc.stores.sqlite_index import SQLiteIndexStore

__all__ = [
    "BlobStore",
    "CredentialDirectory",
    "FileBlobStore",
    "InMemoryBlobStore",
    "InMemoryIndexStore",
    "IndexCredentialDirectory",
    "IndexStore",
    "SQLiteIndexStore",
    "iter_blobs",
    "iter_index_keys",
]
