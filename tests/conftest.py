"""
Pytest configuration and fixtures for object cache tests.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Generator
from unittest.mock import patch

import pytest

from oc.config import Settings, clear_settings_cache
from oc.exceptions import TransientStoreError
from oc.stores.memory import InMemoryBlobStore, InMemoryIndexStore
from oc.tracker import AccessTracker
from oc.types import BlobInfo, Page, StoredBlob, index_key

DAY_MS = 24 * 60 * 60 * 1000
WEEK_MS = 7 * DAY_MS
NOW = 1_700_000_000_000


class FlakyBlobStore(InMemoryBlobStore):
    """In-memory blob store with injectable failures."""

    def __init__(self) -> None:
        super().__init__()
        self.fail_delete: set[str] = set()
        self.fail_list = False
        self.deleted: list[str] = []
        self.list_calls = 0

    async def delete(self, key: str) -> None:
        if key in self.fail_delete:
            raise TransientStoreError("blob delete failed", context={"key": key})
        self.deleted.append(key)
        await super().delete(key)

    async def list(self, cursor: str | None = None, limit: int = 1000) -> Page[BlobInfo]:
        self.list_calls += 1
        if self.fail_list:
            raise TransientStoreError("blob list failed")
        return await super().list(cursor=cursor, limit=limit)


class FlakyIndexStore(InMemoryIndexStore):
    """In-memory index store with injectable failures."""

    def __init__(self) -> None:
        super().__init__()
        self.fail_get: set[str] = set()
        self.fail_delete: set[str] = set()
        self.fail_put = 0  # number of upcoming puts that fail
        self.fail_list_after_pages: int | None = None
        self.pages_listed = 0

    async def get(self, key: str) -> str | None:
        if key in self.fail_get:
            raise TransientStoreError("index get failed", context={"key": key})
        return await super().get(key)

    async def put(self, key: str, value: str) -> None:
        if self.fail_put:
            self.fail_put -= 1
            raise TransientStoreError("index put failed", context={"key": key})
        await super().put(key, value)

    async def delete(self, key: str) -> None:
        if key in self.fail_delete:
            raise TransientStoreError("index delete failed", context={"key": key})
        await super().delete(key)

    async def list_keys(
        self, prefix: str = "", cursor: str | None = None, limit: int = 1000
    ) -> Page[str]:
        if (
            self.fail_list_after_pages is not None
            and self.pages_listed >= self.fail_list_after_pages
        ):
            raise TransientStoreError("index list failed")
        self.pages_listed += 1
        return await super().list_keys(prefix=prefix, cursor=cursor, limit=limit)


async def seed_entry(
    blobs: InMemoryBlobStore,
    index: InMemoryIndexStore,
    key: str,
    size: int,
    last_used: int | str | None,
) -> StoredBlob:
    """Write a blob and (unless last_used is None) its timestamp."""
    blob = await blobs.put(key, b"x" * size, {"content-type": "application/octet-stream"})
    if last_used is not None:
        await index.put(index_key(key), str(last_used))
    return blob


@pytest.fixture
def temp_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for test outputs."""
    return tmp_path


@pytest.fixture
def mock_env_vars(temp_dir: Path) -> Generator[dict[str, str], None, None]:
    """Provide environment variables for a small test cache."""
    env_vars = {
        "CACHE_DIR": str(temp_dir / "cache"),
        "MAX_IDLE_MS": str(WEEK_MS),
        "MAX_SIZE_BYTES": "1000",
        "DELETE_CONCURRENCY": "4",
        "DELETE_BATCH_SIZE": "10",
        "CYCLE_TIMEOUT_SECONDS": "0",
        "SWEEP_INTERVAL_SECONDS": "0",
        "LIST_PAGE_SIZE": "2",
        "LOG_LEVEL": "DEBUG",
    }

    with patch.dict(os.environ, env_vars, clear=False):
        clear_settings_cache()
        yield env_vars


@pytest.fixture
def mock_settings(mock_env_vars: dict[str, str]) -> Generator[Settings, None, None]:
    """Provide a Settings instance with test configuration."""
    from oc.config import get_settings

    settings = get_settings()
    settings.ensure_directories()
    yield settings
    clear_settings_cache()


@pytest.fixture(autouse=True)
def reset_settings_cache() -> Generator[None, None, None]:
    """Automatically reset settings cache before and after each test."""
    clear_settings_cache()
    yield
    clear_settings_cache()


@pytest.fixture
def blobs() -> FlakyBlobStore:
    return FlakyBlobStore()


@pytest.fixture
def index() -> FlakyIndexStore:
    return FlakyIndexStore()


@pytest.fixture
def tracker(index: FlakyIndexStore) -> AccessTracker:
    # Small pages so every listing crosses page boundaries.
    return AccessTracker(index, page_size=2)
