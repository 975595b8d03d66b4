"""
Unit tests for VersionTracker.

Tests cover:
- Create / update / delete version numbering
- Optimistic-concurrency conflicts
- Concurrent writers on one key
- vread and history reads
- Re-creation after delete
- Per-key lock cleanup
"""

import asyncio

import pytest

from ehr.fhir_core.errors import (
    InvalidParameterError,
    NotFoundError,
    ResourceDeletedError,
    ResourceExistsError,
    VersionConflictError,
)
from ehr.fhir_core.history import InMemoryHistoryStore, VersionAction, VersionTracker


class FakeClock:
    """Deterministic millisecond clock."""

    def __init__(self, start: int = 1_700_000_000_000) -> None:
        self.now = start

    def __call__(self) -> int:
        self.now += 1
        return self.now


class YieldingHistoryStore(InMemoryHistoryStore):
    """In-memory store that hands control back to the event loop on reads.

    Lets concurrent writers interleave between reading the current version
    and appending the next one.
    """

    def __init__(self) -> None:
        super().__init__()
        self.calls = []

    async def latest(self, resource_type, resource_id):
        self.calls.append(("latest", resource_id))
        await asyncio.sleep(0)
        return await super().latest(resource_type, resource_id)

    async def append(self, record):
        self.calls.append(("append", record.resource_id))
        await super().append(record)


@pytest.fixture
def store():
    return InMemoryHistoryStore()


@pytest.fixture
def tracker(store):
    return VersionTracker(store, default_page_size=20, max_page_size=50, clock=FakeClock())


@pytest.fixture
def yielding_store():
    return YieldingHistoryStore()


@pytest.fixture
def yielding_tracker(yielding_store):
    return VersionTracker(yielding_store, clock=FakeClock())


class TestMutations:
    """Tests for create/update/delete."""

    @pytest.mark.asyncio
    async def test_draft_to_active_scenario(self, tracker):
        """Create, update, then a stale update conflicts and changes nothing."""
        assert await tracker.record_create("ResearchStudy", "A", {"status": "draft"}) == 1
        assert await tracker.record_update("ResearchStudy", "A", 1, {"status": "active"}) == 2

        with pytest.raises(VersionConflictError) as exc_info:
            await tracker.record_update("ResearchStudy", "A", 1, {"status": "closed"})
        assert exc_info.value.expected_version == 1
        assert exc_info.value.current_version == 2
        assert exc_info.value.code == "version-conflict"

        assert await tracker.current_version("ResearchStudy", "A") == 2
        assert await tracker.get_at_version("ResearchStudy", "A", 2) == {"status": "active"}

    @pytest.mark.asyncio
    async def test_nth_mutation_is_version_n(self, tracker):
        """Every successful mutation increments the version by exactly one."""
        version = await tracker.record_create("SurgicalCase", "s-1", {"n": 0})
        for n in range(2, 12):
            version = await tracker.record_update("SurgicalCase", "s-1", version, {"n": n})
            assert version == n
        assert await tracker.record_delete("SurgicalCase", "s-1", version) == 12

    @pytest.mark.asyncio
    async def test_create_existing_rejected(self, tracker):
        """Creating a live resource twice fails."""
        await tracker.record_create("Condition", "c-1", {})
        with pytest.raises(ResourceExistsError):
            await tracker.record_create("Condition", "c-1", {})

    @pytest.mark.asyncio
    async def test_update_missing(self, tracker):
        """Updating a resource with no history is NotFound."""
        with pytest.raises(NotFoundError):
            await tracker.record_update("Condition", "missing", 1, {})

    @pytest.mark.asyncio
    async def test_delete_conflict(self, tracker):
        """Delete uses the same compare-and-swap check."""
        await tracker.record_create("Condition", "c-1", {})
        with pytest.raises(VersionConflictError):
            await tracker.record_delete("Condition", "c-1", 7)
        assert await tracker.count_history("Condition", "c-1") == 1

    @pytest.mark.asyncio
    async def test_update_after_delete(self, tracker):
        """A deleted resource cannot be updated."""
        await tracker.record_create("Condition", "c-1", {})
        await tracker.record_delete("Condition", "c-1", 1)
        with pytest.raises(ResourceDeletedError):
            await tracker.record_update("Condition", "c-1", 2, {})
        with pytest.raises(ResourceDeletedError):
            await tracker.record_delete("Condition", "c-1", 2)

    @pytest.mark.asyncio
    async def test_create_after_delete_continues_lineage(self, tracker):
        """Re-creating a deleted resource continues the version sequence."""
        await tracker.record_create("Condition", "c-1", {"v": 1})
        await tracker.record_delete("Condition", "c-1", 1)
        assert await tracker.record_create("Condition", "c-1", {"v": 3}) == 3

        history = await tracker.get_history("Condition", "c-1")
        assert [r.action for r in history] == [
            VersionAction.CREATE,
            VersionAction.DELETE,
            VersionAction.CREATE,
        ]

    @pytest.mark.asyncio
    async def test_snapshot_is_copied(self, tracker):
        """Later mutation of the caller's dict does not change history."""
        doc = {"status": "draft"}
        await tracker.record_create("Condition", "c-1", doc)
        doc["status"] = "mutated"
        assert await tracker.get_at_version("Condition", "c-1", 1) == {"status": "draft"}

    @pytest.mark.asyncio
    async def test_invalid_arguments(self, tracker):
        """Empty identities and non-object snapshots are rejected."""
        with pytest.raises(InvalidParameterError):
            await tracker.record_create("", "c-1", {})
        with pytest.raises(InvalidParameterError):
            await tracker.record_create("Condition", "", {})
        with pytest.raises(InvalidParameterError):
            await tracker.record_create("Condition", "c-1", ["not", "an", "object"])


class TestConcurrency:
    """Tests for per-key serialization."""

    @pytest.mark.asyncio
    async def test_concurrent_updates_one_wins(self, yielding_tracker, yielding_store):
        """Two updates with the same expected version: exactly one succeeds."""
        tracker = yielding_tracker
        await tracker.record_create("Condition", "c-1", {"status": "draft"})

        results = await asyncio.gather(
            tracker.record_update("Condition", "c-1", 1, {"status": "a"}),
            tracker.record_update("Condition", "c-1", 1, {"status": "b"}),
            return_exceptions=True,
        )

        successes = [r for r in results if r == 2]
        conflicts = [r for r in results if isinstance(r, VersionConflictError)]
        assert len(successes) == 1
        assert len(conflicts) == 1
        assert await tracker.current_version("Condition", "c-1") == 2
        # The second writer only reads once the first has appended
        assert yielding_store.calls[-4:-1] == [
            ("latest", "c-1"),
            ("append", "c-1"),
            ("latest", "c-1"),
        ]

    @pytest.mark.asyncio
    async def test_many_concurrent_writers(self, yielding_tracker):
        """Writers that retry on conflict end with one version per write."""
        tracker = yielding_tracker
        await tracker.record_create("Condition", "c-1", {"n": 0})

        async def writer(i):
            while True:
                current = await tracker.current_version("Condition", "c-1")
                try:
                    return await tracker.record_update("Condition", "c-1", current, {"n": i})
                except VersionConflictError:
                    await asyncio.sleep(0)

        versions = await asyncio.gather(*(writer(i) for i in range(10)))
        assert sorted(versions) == list(range(2, 12))
        assert await tracker.count_history("Condition", "c-1") == 11

    @pytest.mark.asyncio
    async def test_different_keys_independent(self, yielding_tracker, yielding_store):
        """Creates on different keys do not wait for each other."""
        versions = await asyncio.gather(
            *(yielding_tracker.record_create("Condition", f"c-{i}", {}) for i in range(20))
        )
        assert versions == [1] * 20
        # Every key read its state before any key appended
        assert yielding_store.calls[:20] == [("latest", f"c-{i}") for i in range(20)]

    @pytest.mark.asyncio
    async def test_locks_released_when_idle(self, tracker):
        """Per-key locks are discarded once no one holds them."""
        await tracker.record_create("Condition", "c-1", {})
        with pytest.raises(VersionConflictError):
            await tracker.record_update("Condition", "c-1", 5, {})
        assert tracker.active_lock_count == 0

    @pytest.mark.asyncio
    async def test_cancelled_waiter_records_nothing(self, tracker, store):
        """A writer cancelled while waiting for the lock appends nothing."""
        await tracker.record_create("Condition", "c-1", {})

        async with tracker._key_lock("Condition", "c-1"):
            waiter = asyncio.create_task(tracker.record_update("Condition", "c-1", 1, {"x": 1}))
            await asyncio.sleep(0)
            waiter.cancel()
            with pytest.raises(asyncio.CancelledError):
                await waiter

        assert await store.count("Condition", "c-1") == 1
        assert tracker.active_lock_count == 0


class TestReads:
    """Tests for history and vread."""

    @pytest.mark.asyncio
    async def test_get_at_version_of_latest_history(self, tracker):
        """vread of the last history entry equals the latest snapshot."""
        await tracker.record_create("Pregnancy", "p-1", {"status": "active"})
        await tracker.record_update("Pregnancy", "p-1", 1, {"status": "completed"})

        history = await tracker.get_history("Pregnancy", "p-1")
        last = history[-1]
        assert await tracker.get_at_version("Pregnancy", "p-1", last.version_id) == {"status": "completed"}

    @pytest.mark.asyncio
    async def test_get_at_missing_version(self, tracker):
        await tracker.record_create("Pregnancy", "p-1", {})
        with pytest.raises(NotFoundError):
            await tracker.get_at_version("Pregnancy", "p-1", 9)

    @pytest.mark.asyncio
    async def test_get_at_tombstone(self, tracker):
        """The delete version reads as gone; earlier versions stay readable."""
        await tracker.record_create("Pregnancy", "p-1", {"status": "active"})
        await tracker.record_delete("Pregnancy", "p-1", 1)

        with pytest.raises(ResourceDeletedError) as exc_info:
            await tracker.get_at_version("Pregnancy", "p-1", 2)
        assert isinstance(exc_info.value, NotFoundError)
        assert exc_info.value.code == "gone"
        assert await tracker.get_at_version("Pregnancy", "p-1", 1) == {"status": "active"}

    @pytest.mark.asyncio
    async def test_get_current(self, tracker):
        await tracker.record_create("Pregnancy", "p-1", {"status": "active"})
        current = await tracker.get_current("Pregnancy", "p-1")
        assert current.version_id == 1
        with pytest.raises(NotFoundError):
            await tracker.get_current("Pregnancy", "p-2")

    @pytest.mark.asyncio
    async def test_history_paging(self, tracker):
        """History is oldest first; limit/offset page through it."""
        version = await tracker.record_create("Condition", "c-1", {"n": 1})
        for n in range(2, 6):
            version = await tracker.record_update("Condition", "c-1", version, {"n": n})

        page = await tracker.get_history("Condition", "c-1", limit=2, offset=2)
        assert [r.version_id for r in page] == [3, 4]

    @pytest.mark.asyncio
    async def test_history_limit_clamped(self, tracker):
        """Limits above the maximum page size are clamped."""
        await tracker.record_create("Condition", "c-1", {})
        page = await tracker.get_history("Condition", "c-1", limit=10_000)
        assert len(page) == 1

    @pytest.mark.asyncio
    async def test_negative_paging_rejected(self, tracker):
        await tracker.record_create("Condition", "c-1", {})
        with pytest.raises(InvalidParameterError):
            await tracker.get_history("Condition", "c-1", limit=-1)
        with pytest.raises(InvalidParameterError):
            await tracker.get_history("Condition", "c-1", offset=-1)
        with pytest.raises(InvalidParameterError):
            await tracker.get_system_history(limit=-5)

    @pytest.mark.asyncio
    async def test_history_of_unknown_resource(self, tracker):
        with pytest.raises(NotFoundError):
            await tracker.get_history("Condition", "nope")

    @pytest.mark.asyncio
    async def test_type_and_system_history(self, tracker):
        """Type/system history is newest first with totals."""
        await tracker.record_create("Condition", "c-1", {})
        await tracker.record_create("Observation", "o-1", {})
        await tracker.record_update("Condition", "c-1", 1, {"x": 1})

        records, total = await tracker.get_type_history("Condition")
        assert total == 2
        assert [r.version_id for r in records] == [2, 1]

        records, total = await tracker.get_system_history()
        assert total == 3
        assert [r.resource_type for r in records] == ["Condition", "Observation", "Condition"]

    @pytest.mark.asyncio
    async def test_history_since(self, tracker):
        """since_ms keeps records at or after the instant."""
        await tracker.record_create("Condition", "c-1", {})
        second = await tracker.record_create("Condition", "c-2", {})
        assert second == 1

        all_records, _ = await tracker.get_type_history("Condition")
        cutoff = all_records[0].timestamp_ms
        records, total = await tracker.get_type_history("Condition", since_ms=cutoff)
        assert total == 1
        assert records[0].resource_id == "c-2"
