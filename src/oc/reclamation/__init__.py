"""
Reclamation engine.

- expiration.py: deletes entries idle past the maximum idle time
- eviction.py: deletes least-recently-used entries over the size budget
- deletion.py: blob-then-index deletes with bounded concurrency and a deadline
- coordinator.py: runs one cycle (expiration, then eviction) into a CycleReport
- scheduler.py: serialized periodic cycles
"""

from oc.reclamation.coordinator import ReclamationCoordinator
from oc.reclamation.deletion import Deadline, DeletionOutcome, EntryDeleter
from oc.reclamation.eviction import SizeBoundEvictor, order_candidates
from oc.reclamation.expiration import ExpirationResult, ExpirationSweep
from oc.reclamation.scheduler import ReclamationScheduler

__all__ = [
    "Deadline",
    "DeletionOutcome",
    "EntryDeleter",
    "ExpirationResult",
    "ExpirationSweep",
    "ReclamationCoordinator",
    "ReclamationScheduler",
    "SizeBoundEvictor",
    "order_candidates",
]
