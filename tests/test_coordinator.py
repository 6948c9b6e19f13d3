"""
Tests for reclamation cycles and the scheduler.
"""

from __future__ import annotations

import asyncio

import pytest

from conftest import NOW, WEEK_MS, FlakyBlobStore, FlakyIndexStore, seed_entry
from oc.config import Settings
from oc.reclamation.coordinator import ReclamationCoordinator
from oc.reclamation.deletion import Deadline
from oc.reclamation.scheduler import ReclamationScheduler
from oc.tracker import AccessTracker
from oc.types import BlobInfo, CycleStatus, Occupancy, Page


def make_coordinator(
    blobs: FlakyBlobStore,
    tracker: AccessTracker,
    max_idle_ms: int = WEEK_MS,
    max_size_bytes: int = 0,
    concurrency: int = 4,
) -> ReclamationCoordinator:
    return ReclamationCoordinator(
        blobs=blobs,
        tracker=tracker,
        max_idle_ms=max_idle_ms,
        max_size_bytes=max_size_bytes,
        delete_concurrency=concurrency,
        batch_size=2,
        page_size=2,
    )


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class TestRunCycle:
    """Test the full expiration-then-eviction cycle."""

    @pytest.mark.asyncio
    async def test_expires_then_evicts(
        self, blobs: FlakyBlobStore, index: FlakyIndexStore, tracker: AccessTracker
    ) -> None:
        await seed_entry(blobs, index, "stale", 1000, NOW - 2 * WEEK_MS)
        await seed_entry(blobs, index, "a", 100, NOW - 3000)
        await seed_entry(blobs, index, "b", 200, NOW - 2000)
        await seed_entry(blobs, index, "c", 100, NOW - 1000)

        report = await make_coordinator(blobs, tracker, max_size_bytes=250).run_cycle(NOW)

        assert report.status == CycleStatus.COMPLETE
        assert report.ok
        assert report.expiration.deleted == ["stale"]
        assert report.eviction.deleted == ["a", "b"]
        assert report.eviction.bytes_before == 400
        assert report.deleted == ["stale", "a", "b"]
        assert sorted(k for k in ["stale", "a", "b", "c"] if k in blobs) == ["c"]
        assert report.cycle_id.startswith("cycle_")
        assert report.completed_at is not None

    @pytest.mark.asyncio
    async def test_snapshot_never_includes_expired_keys(
        self, blobs: FlakyBlobStore, index: FlakyIndexStore, tracker: AccessTracker
    ) -> None:
        await seed_entry(blobs, index, "old-1", 500, NOW - 2 * WEEK_MS)
        await seed_entry(blobs, index, "old-2", 500, NOW - 3 * WEEK_MS)
        await seed_entry(blobs, index, "live", 100, NOW)
        coordinator = make_coordinator(blobs, tracker, max_size_bytes=50)

        snapshots: list[Occupancy] = []
        compute = coordinator.eviction.inventory.compute_occupancy

        async def spy() -> Occupancy:
            occupancy = await compute()
            snapshots.append(occupancy)
            return occupancy

        coordinator.eviction.inventory.compute_occupancy = spy  # type: ignore[method-assign]

        report = await coordinator.run_cycle(NOW)

        assert sorted(report.expiration.deleted) == ["old-1", "old-2"]
        assert len(snapshots) == 1
        assert set(snapshots[0].sizes) == {"live"}
        assert report.eviction.bytes_before == 100
        assert report.eviction.deleted == ["live"]

    @pytest.mark.asyncio
    async def test_disabled_policies_delete_nothing(
        self, blobs: FlakyBlobStore, index: FlakyIndexStore, tracker: AccessTracker
    ) -> None:
        await seed_entry(blobs, index, "ancient", 10_000, 1)

        report = await make_coordinator(
            blobs, tracker, max_idle_ms=0, max_size_bytes=0
        ).run_cycle(NOW)

        assert report.expiration.skipped and report.eviction.skipped
        assert report.deleted == []
        assert "ancient" in blobs

    @pytest.mark.asyncio
    async def test_failures_are_aggregated_not_raised(
        self, blobs: FlakyBlobStore, index: FlakyIndexStore, tracker: AccessTracker
    ) -> None:
        for key in ["a", "b", "c"]:
            await seed_entry(blobs, index, key, 10, NOW - 2 * WEEK_MS)
        blobs.fail_delete.add("b")

        report = await make_coordinator(blobs, tracker).run_cycle(NOW)

        assert report.status == CycleStatus.COMPLETE
        assert not report.ok
        assert report.expiration.deleted == ["a", "c"]
        assert [f.key for f in report.failures] == ["b"]
        assert report.to_dict()["expiration"]["failures"][0]["operation"] == "delete_blob"

    @pytest.mark.asyncio
    async def test_unlistable_index_fails_cycle(
        self, blobs: FlakyBlobStore, index: FlakyIndexStore, tracker: AccessTracker
    ) -> None:
        await seed_entry(blobs, index, "a", 10, NOW)
        index.fail_list_after_pages = 0

        report = await make_coordinator(blobs, tracker, max_size_bytes=1).run_cycle(NOW)

        assert report.status == CycleStatus.FAILED
        assert "Cannot list tracked keys" in (report.error or "")
        assert blobs.list_calls == 0
        assert "a" in blobs

    @pytest.mark.asyncio
    async def test_unlistable_blob_store_fails_cycle_after_expiration(
        self, blobs: FlakyBlobStore, index: FlakyIndexStore, tracker: AccessTracker
    ) -> None:
        await seed_entry(blobs, index, "old", 10, NOW - 2 * WEEK_MS)
        await seed_entry(blobs, index, "live", 10, NOW)
        blobs.fail_list = True

        report = await make_coordinator(blobs, tracker, max_size_bytes=1).run_cycle(NOW)

        assert report.status == CycleStatus.FAILED
        assert report.expiration.deleted == ["old"]
        assert report.eviction.deleted == []
        assert "live" in blobs

    @pytest.mark.asyncio
    async def test_expired_deadline_starts_no_deletes(
        self, blobs: FlakyBlobStore, index: FlakyIndexStore, tracker: AccessTracker
    ) -> None:
        await seed_entry(blobs, index, "old", 10, NOW - 2 * WEEK_MS)
        clock = FakeClock()
        deadline = Deadline(1.0, clock=clock)
        clock.now = 5.0

        report = await make_coordinator(blobs, tracker, max_size_bytes=1).run_cycle(
            NOW, deadline=deadline
        )

        assert report.status == CycleStatus.PARTIAL
        assert report.deleted == []
        assert report.eviction.skipped
        assert "old" in blobs

    @pytest.mark.asyncio
    async def test_deadline_lets_in_flight_deletes_finish(
        self, index: FlakyIndexStore, tracker: AccessTracker
    ) -> None:
        clock = FakeClock()

        class SlowBlobStore(FlakyBlobStore):
            async def delete(self, key: str) -> None:
                # The deadline passes while this delete is in flight.
                clock.now = 10.0
                await super().delete(key)

        blobs = SlowBlobStore()
        for key in ["a", "b", "c"]:
            await seed_entry(blobs, index, key, 10, NOW - 2 * WEEK_MS)

        report = await make_coordinator(blobs, tracker, concurrency=1).run_cycle(
            NOW, deadline=Deadline(1.0, clock=clock)
        )

        assert report.status == CycleStatus.PARTIAL
        assert report.expiration.deleted == ["a"]
        assert report.expiration.deferred == ["b"]
        assert "LAST_USED_a" not in index
        assert "b" in blobs and "LAST_USED_b" in index
        assert "c" in blobs

    @pytest.mark.parametrize("max_idle_ms", [WEEK_MS, 0])
    @pytest.mark.asyncio
    async def test_fresh_orphaned_timestamp_is_purged(
        self,
        blobs: FlakyBlobStore,
        index: FlakyIndexStore,
        tracker: AccessTracker,
        max_idle_ms: int,
    ) -> None:
        await seed_entry(blobs, index, "a", 300, NOW - 1000)
        await index.put("LAST_USED_ghost", str(NOW - 5))

        report = await make_coordinator(
            blobs, tracker, max_idle_ms=max_idle_ms, max_size_bytes=100
        ).run_cycle(NOW)

        assert report.status == CycleStatus.COMPLETE
        assert report.eviction.purged == ["ghost"]
        assert report.eviction.deleted == ["a"]
        assert "LAST_USED_ghost" not in index
        assert len(index) == 0

    @pytest.mark.asyncio
    async def test_timestamp_left_by_failed_index_delete_heals_without_expiration(
        self, blobs: FlakyBlobStore, index: FlakyIndexStore, tracker: AccessTracker
    ) -> None:
        await seed_entry(blobs, index, "a", 300, NOW - 1000)
        await seed_entry(blobs, index, "b", 10, NOW)
        index.fail_delete.add("LAST_USED_a")
        coordinator = make_coordinator(blobs, tracker, max_idle_ms=0, max_size_bytes=100)

        first = await coordinator.run_cycle(NOW)

        assert [(f.key, f.operation) for f in first.failures] == [("a", "delete_index")]
        assert "a" not in blobs and "LAST_USED_a" in index
        assert first.eviction.bytes_after == 10
        assert "b" in blobs

        index.fail_delete.clear()
        second = await coordinator.run_cycle(NOW)

        assert second.ok
        assert second.eviction.purged == ["a"]
        assert "LAST_USED_a" not in index
        assert "b" in blobs and "LAST_USED_b" in index

    def test_from_settings(
        self, mock_settings: Settings, blobs: FlakyBlobStore, tracker: AccessTracker
    ) -> None:
        coordinator = ReclamationCoordinator.from_settings(mock_settings, blobs, tracker)

        assert coordinator.expiration.max_idle_ms == WEEK_MS
        assert coordinator.eviction.max_size_bytes == 1000
        assert coordinator.delete_concurrency == 4
        assert coordinator.cycle_timeout is None


class TestReclamationScheduler:
    """Test serialized scheduling."""

    @pytest.mark.asyncio
    async def test_overlapping_trigger_is_skipped(
        self, index: FlakyIndexStore, tracker: AccessTracker
    ) -> None:
        release = asyncio.Event()
        entered = asyncio.Event()

        class BlockingBlobStore(FlakyBlobStore):
            async def delete(self, key: str) -> None:
                entered.set()
                await release.wait()
                await super().delete(key)

        blobs = BlockingBlobStore()
        await seed_entry(blobs, index, "old", 10, NOW - 2 * WEEK_MS)
        scheduler = ReclamationScheduler(make_coordinator(blobs, tracker), 3600)

        first = asyncio.create_task(scheduler.run_once(NOW))
        await entered.wait()

        assert await scheduler.run_once(NOW) is None

        release.set()
        report = await first
        assert report is not None
        assert report.expiration.deleted == ["old"]
        assert scheduler.last_report is report

    @pytest.mark.asyncio
    async def test_crashing_cycle_does_not_stop_the_loop(
        self, index: FlakyIndexStore, tracker: AccessTracker
    ) -> None:
        class CorruptBlobStore(FlakyBlobStore):
            async def list(self, cursor: str | None = None, limit: int = 1000) -> Page[BlobInfo]:
                self.list_calls += 1
                raise KeyError("size")

        blobs = CorruptBlobStore()
        await seed_entry(blobs, index, "a", 10, NOW)
        scheduler = ReclamationScheduler(
            make_coordinator(blobs, tracker, max_size_bytes=1), 0.01
        )

        scheduler.start()
        for _ in range(100):
            if blobs.list_calls >= 2:
                break
            await asyncio.sleep(0.01)

        assert blobs.list_calls >= 2
        assert scheduler.running
        await scheduler.stop()
        assert not scheduler.running
        assert scheduler.last_report is None

    @pytest.mark.asyncio
    async def test_start_runs_cycles_until_stopped(
        self, blobs: FlakyBlobStore, index: FlakyIndexStore, tracker: AccessTracker
    ) -> None:
        await seed_entry(blobs, index, "ancient", 10, 1)
        scheduler = ReclamationScheduler(make_coordinator(blobs, tracker), 0.01)

        scheduler.start()
        assert scheduler.running
        for _ in range(100):
            if scheduler.last_report is not None:
                break
            await asyncio.sleep(0.01)
        await scheduler.stop()

        assert not scheduler.running
        assert scheduler.last_report is not None
        assert "ancient" not in blobs
