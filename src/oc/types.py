"""
Core types for the object cache.

This module defines the data structures shared by stores, the gateway
and the reclamation engine:
- Key prefixes used in the index store
- Frozen dataclasses for listing results (BlobInfo, TrackedKey, Page)
- Cycle reporting (Anomaly, KeyFailure, PhaseReport, CycleReport)
- Helper functions for ID generation and timestamps
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Generic, TypeVar

from uuid6 import uuid7

# Index entries holding last-access timestamps are "LAST_USED_" + object key.
LAST_USED_PREFIX = "LAST_USED_"
# Credentials are "USER_" + username -> password.
USER_PREFIX = "USER_"

T = TypeVar("T")


def generate_id(prefix: str = "") -> str:
    """Generate a time-ordered unique ID using UUID7.

    Args:
        prefix: Optional prefix for the ID (e.g., "cycle").

    Returns:
        A unique ID string, optionally prefixed.
    """
    uid = str(uuid7())
    return f"{prefix}_{uid}" if prefix else uid


def utc_now() -> datetime:
    """Get current UTC time with timezone info."""
    return datetime.now(timezone.utc)


def now_ms() -> int:
    """Milliseconds since the epoch, the unit stored in LAST_USED_ entries."""
    return time.time_ns() // 1_000_000


def index_key(key: str) -> str:
    """Index store key holding the last-access timestamp for ``key``."""
    return LAST_USED_PREFIX + key


@dataclass(frozen=True)
class StoredBlob:
    """A blob fetched from the blob store."""

    key: str
    data: bytes
    metadata: dict[str, str] = field(default_factory=dict)
    etag: str = ""

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class BlobInfo:
    """One entry of a blob store listing."""

    key: str
    size: int


@dataclass(frozen=True)
class TrackedKey:
    """A key with its last-access timestamp.

    ``last_accessed_at`` is None when the stored value could not be parsed
    as an integer; such keys are treated as stale.
    """

    key: str
    last_accessed_at: int | None

    @property
    def stale(self) -> bool:
        return self.last_accessed_at is None


@dataclass(frozen=True)
class Page(Generic[T]):
    """One page of a store listing.

    ``cursor`` is None on the last page.
    """

    items: list[T]
    cursor: str | None = None


@dataclass
class Occupancy:
    """Snapshot of blob store usage."""

    total_bytes: int = 0
    sizes: dict[str, int] = field(default_factory=dict)

    @property
    def blob_count(self) -> int:
        return len(self.sizes)


class Phase(str, Enum):
    """Phases of a reclamation cycle."""

    EXPIRATION = "expiration"
    EVICTION = "eviction"


class CycleStatus(str, Enum):
    """Outcome of a reclamation cycle."""

    COMPLETE = "complete"
    PARTIAL = "partial"  # deadline reached before all deletions started
    FAILED = "failed"


class AnomalyKind(str, Enum):
    """Data integrity anomalies found during a cycle. None of them is fatal."""

    UNPARSABLE_TIMESTAMP = "unparsable_timestamp"
    SURVIVOR_WITHOUT_BLOB = "survivor_without_blob"
    UNTRACKED_BLOB = "untracked_blob"


@dataclass(frozen=True)
class Anomaly:
    """A data integrity anomaly observed for a key."""

    kind: AnomalyKind
    key: str
    detail: str = ""


@dataclass(frozen=True)
class KeyFailure:
    """A per-key store failure during a cycle."""

    key: str
    phase: Phase
    operation: str  # "read_index", "read_blob", "delete_blob", "delete_index" or "delete"
    error: str


@dataclass
class PhaseReport:
    """Result of one reclamation phase."""

    phase: Phase
    skipped: bool = False  # policy disabled by configuration
    examined: int = 0
    deleted: list[str] = field(default_factory=list)
    failures: list[KeyFailure] = field(default_factory=list)
    anomalies: list[Anomaly] = field(default_factory=list)
    deferred: list[str] = field(default_factory=list)  # not started before the deadline
    purged: list[str] = field(default_factory=list)  # timestamps whose blob was gone
    bytes_before: int | None = None
    bytes_after: int | None = None
    over_budget: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "phase": self.phase.value,
            "skipped": self.skipped,
            "examined": self.examined,
            "deleted": list(self.deleted),
            "failures": [
                {"key": f.key, "operation": f.operation, "error": f.error}
                for f in self.failures
            ],
            "anomalies": [
                {"kind": a.kind.value, "key": a.key, "detail": a.detail}
                for a in self.anomalies
            ],
            "deferred": list(self.deferred),
            "purged": list(self.purged),
            "bytes_before": self.bytes_before,
            "bytes_after": self.bytes_after,
            "over_budget": self.over_budget,
        }


@dataclass
class CycleReport:
    """Aggregated outcome of one reclamation cycle."""

    cycle_id: str
    now: int
    started_at: datetime = field(default_factory=utc_now)
    completed_at: datetime | None = None
    status: CycleStatus = CycleStatus.COMPLETE
    expiration: PhaseReport = field(
        default_factory=lambda: PhaseReport(Phase.EXPIRATION)
    )
    eviction: PhaseReport = field(default_factory=lambda: PhaseReport(Phase.EVICTION))
    error: str | None = None

    @property
    def phases(self) -> tuple[PhaseReport, PhaseReport]:
        return (self.expiration, self.eviction)

    @property
    def deleted(self) -> list[str]:
        return self.expiration.deleted + self.eviction.deleted

    @property
    def failures(self) -> list[KeyFailure]:
        return self.expiration.failures + self.eviction.failures

    @property
    def anomalies(self) -> list[Anomaly]:
        return self.expiration.anomalies + self.eviction.anomalies

    @property
    def ok(self) -> bool:
        return self.status != CycleStatus.FAILED and not self.failures

    def to_dict(self) -> dict[str, Any]:
        return {
            "cycle_id": self.cycle_id,
            "now": self.now,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "status": self.status.value,
            "error": self.error,
            "expiration": self.expiration.to_dict(),
            "eviction": self.eviction.to_dict(),
        }
