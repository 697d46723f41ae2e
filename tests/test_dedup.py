"""Tests for processed-message tracking.

Tests persistence across reloads, clearing, concurrent marks and that a
failed write leaves the in-memory set untouched.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from notifier.core.errors import DatabaseError
from notifier.db.store import PROCESSED_MESSAGES_KEY, StateStore
from notifier.engine.dedup import DedupTracker


@pytest.fixture
async def tracker(store: StateStore) -> DedupTracker:
    """Return a loaded DedupTracker over the test store."""
    tracker = DedupTracker(store)
    await tracker.load()
    return tracker


class TestDedupTracker:
    """Tests for DedupTracker."""

    @pytest.mark.asyncio
    async def test_starts_empty(self, tracker: DedupTracker) -> None:
        """Test that a fresh store has no processed ids."""
        assert len(tracker) == 0
        assert tracker.has("m1") is False

    @pytest.mark.asyncio
    async def test_mark_persists_across_reload(
        self, tracker: DedupTracker, store: StateStore
    ) -> None:
        """Test that marked ids survive a restart."""
        await tracker.mark_processed("m1")
        assert tracker.has("m1") is True

        reloaded = DedupTracker(store)
        await reloaded.load()
        assert reloaded.has("m1") is True
        assert await store.get_json_list(PROCESSED_MESSAGES_KEY) == ["m1"]

    @pytest.mark.asyncio
    async def test_mark_is_idempotent(self, tracker: DedupTracker, store: StateStore) -> None:
        """Test that marking twice stores the id once."""
        await tracker.mark_processed("m1")
        await tracker.mark_processed("m1")
        assert len(tracker) == 1
        assert await store.get_json_list(PROCESSED_MESSAGES_KEY) == ["m1"]

    @pytest.mark.asyncio
    async def test_clear(self, tracker: DedupTracker, store: StateStore) -> None:
        """Test that clear forgets ids in memory and on disk."""
        await tracker.mark_processed("m1")
        await tracker.clear()
        assert tracker.has("m1") is False

        reloaded = DedupTracker(store)
        await reloaded.load()
        assert reloaded.has("m1") is False
        assert await store.get_json_list(PROCESSED_MESSAGES_KEY) == []

    @pytest.mark.asyncio
    async def test_concurrent_marks_are_not_lost(self, tracker: DedupTracker) -> None:
        """Test that concurrent marks for different ids all persist."""
        ids = [f"m{i}" for i in range(20)]
        await asyncio.gather(*(tracker.mark_processed(i) for i in ids))
        assert all(tracker.has(i) for i in ids)

        await tracker.load()
        assert len(tracker) == 20

    @pytest.mark.asyncio
    async def test_two_trackers_share_one_store(self, store: StateStore) -> None:
        """Test that independent writers don't overwrite each other."""
        first = DedupTracker(store)
        second = DedupTracker(store)
        await asyncio.gather(
            *(first.mark_processed(f"a{i}") for i in range(10)),
            *(second.mark_processed(f"b{i}") for i in range(10)),
        )
        assert len(await store.get_json_list(PROCESSED_MESSAGES_KEY)) == 20

    @pytest.mark.asyncio
    async def test_reload_sees_clear_from_another_tracker(self, store: StateStore) -> None:
        """Test that a clear through one tracker reaches another after load()."""
        running = DedupTracker(store)
        other = DedupTracker(store)
        await running.mark_processed("m1")

        await other.clear()
        await running.load()

        assert running.has("m1") is False
        await running.mark_processed("m2")
        assert await store.get_json_list(PROCESSED_MESSAGES_KEY) == ["m2"]
        assert len(running) == 1

    @pytest.mark.asyncio
    async def test_failed_write_leaves_set_unchanged(self) -> None:
        """Test that an id is only remembered once it was persisted."""
        store = MagicMock()
        store.add_to_json_set = AsyncMock(side_effect=DatabaseError("disk full"))
        tracker = DedupTracker(store)

        with pytest.raises(DatabaseError):
            await tracker.mark_processed("m1")
        assert tracker.has("m1") is False
