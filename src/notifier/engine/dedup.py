"""Processed-message tracking for duplicate suppression.

DedupTracker keeps the set of message IDs that already produced a
notification. Membership checks are in memory; every mark is persisted
immediately through the state store's atomic set-add, so ids survive a
restart and concurrent marks for different ids never lose each other.

Usage:
    from notifier.engine.dedup import DedupTracker

    tracker = DedupTracker(store)
    await tracker.load()
    if not tracker.has(message_id):
        ...
        await tracker.mark_processed(message_id)
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from notifier.core.logging import get_logger
from notifier.db.store import PROCESSED_MESSAGES_KEY

if TYPE_CHECKING:
    from notifier.db.store import StateStore

logger = get_logger(__name__)


class DedupTracker:
    """Set of processed message IDs, persisted as a JSON array."""

    def __init__(self, store: StateStore, key: str = PROCESSED_MESSAGES_KEY):
        self._store = store
        self._key = key
        self._ids: set[str] = set()
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._ids)

    async def load(self) -> None:
        """Replace the in-memory set with the persisted one."""
        async with self._lock:
            self._ids = set(await self._store.get_json_list(self._key))
        logger.debug("dedup_loaded", count=len(self._ids))

    def has(self, message_id: str) -> bool:
        """Whether the message was already processed."""
        return message_id in self._ids

    async def mark_processed(self, message_id: str) -> None:
        """Record a message as processed and persist it.

        The in-memory set only changes after the write succeeds.

        Raises:
            DatabaseError: If the state store write fails
        """
        async with self._lock:
            await self._store.add_to_json_set(self._key, message_id)
            self._ids.add(message_id)

    async def clear(self) -> None:
        """Forget every processed id (persists an empty set).

        Raises:
            DatabaseError: If the state store write fails
        """
        async with self._lock:
            await self._store.set_json_list(self._key, [])
            self._ids.clear()
        logger.info("dedup_cleared")
