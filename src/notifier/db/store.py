"""Key-value state store backed by SQLite.

StateStore wraps the agent_state table with async accessors. Values are
strings; JSON helpers cover the two structured entries (the processed
message-id list and the settings blob).

Usage:
    from notifier.db.store import StateStore

    store = StateStore("data/notifier.db")
    await store.initialize()

    await store.add_to_json_set("processed_messages", "18c2f0a9")
    settings = await store.get_settings()
"""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import aiosqlite
from pydantic import ValidationError

from notifier.config_schema import UserSettings
from notifier.core.errors import DatabaseError
from notifier.core.logging import get_logger
from notifier.db.models import init_database

logger = get_logger(__name__)

# State keys
PROCESSED_MESSAGES_KEY = "processed_messages"
SETTINGS_KEY = "settings"
LAST_CHECK_KEY = "last_check"


class StateStore:
    """Async key-value store for notifier state.

    Attributes:
        db_path: Path to the SQLite database file
    """

    def __init__(self, db_path: str | Path):
        self.db_path = Path(db_path)
        self._initialized = False

    async def initialize(self) -> None:
        """Initialize the database, creating tables if needed.

        This must be called before any other operations.
        """
        await init_database(self.db_path)
        self._initialized = True

    @asynccontextmanager
    async def _db(self, autocommit: bool = False) -> AsyncIterator[aiosqlite.Connection]:
        """Get a configured database connection.

        Args:
            autocommit: Open with isolation_level=None so the caller can issue
                explicit BEGIN IMMEDIATE / COMMIT statements
        """
        kwargs: dict[str, Any] = {"isolation_level": None} if autocommit else {}
        async with aiosqlite.connect(self.db_path, **kwargs) as db:
            await db.execute("PRAGMA busy_timeout = 10000")
            await db.execute("PRAGMA synchronous = NORMAL")
            db.row_factory = aiosqlite.Row
            yield db

    # =========================================================================
    # Raw state operations
    # =========================================================================

    async def get_state(self, key: str) -> str | None:
        """Get a state value, or None if the key is absent."""
        try:
            async with self._db() as db:
                cursor = await db.execute("SELECT value FROM agent_state WHERE key = ?", (key,))
                row = await cursor.fetchone()
                return row["value"] if row else None

        except aiosqlite.Error as e:
            logger.error("Failed to get state", key=key, error=str(e))
            raise DatabaseError(f"Failed to get state '{key}': {e}") from e

    async def set_state(self, key: str, value: str) -> None:
        """Insert or replace a state value."""
        try:
            async with self._db() as db:
                await db.execute(
                    """
                    INSERT INTO agent_state (key, value, updated_at)
                    VALUES (?, ?, ?)
                    ON CONFLICT(key) DO UPDATE SET
                        value = excluded.value,
                        updated_at = excluded.updated_at
                    """,
                    (key, value, datetime.now(UTC).isoformat()),
                )
                await db.commit()

        except aiosqlite.Error as e:
            logger.error("Failed to set state", key=key, error=str(e))
            raise DatabaseError(f"Failed to set state '{key}': {e}") from e

    # =========================================================================
    # JSON list / set operations
    # =========================================================================

    async def get_json_list(self, key: str) -> list[str]:
        """Read a JSON array of strings stored under key.

        Corrupt or non-list values are logged and read as an empty list.
        """
        raw = await self.get_state(key)
        return _decode_string_list(key, raw)

    async def set_json_list(self, key: str, values: list[str]) -> None:
        """Replace the JSON array stored under key."""
        await self.set_state(key, json.dumps(values))

    async def add_to_json_set(self, key: str, member: str) -> bool:
        """Atomically add member to the JSON array stored under key.

        The read-modify-write runs inside one BEGIN IMMEDIATE transaction, so
        concurrent writers (other tasks or other processes) can't lose each
        other's additions.

        Returns:
            True if the member was added, False if it was already present
        """
        try:
            async with self._db(autocommit=True) as db:
                await db.execute("BEGIN IMMEDIATE")
                try:
                    cursor = await db.execute(
                        "SELECT value FROM agent_state WHERE key = ?", (key,)
                    )
                    row = await cursor.fetchone()
                    members = _decode_string_list(key, row["value"] if row else None)

                    if member in members:
                        await db.execute("ROLLBACK")
                        return False

                    members.append(member)
                    await db.execute(
                        """
                        INSERT INTO agent_state (key, value, updated_at)
                        VALUES (?, ?, ?)
                        ON CONFLICT(key) DO UPDATE SET
                            value = excluded.value,
                            updated_at = excluded.updated_at
                        """,
                        (key, json.dumps(members), datetime.now(UTC).isoformat()),
                    )
                    await db.execute("COMMIT")
                    return True
                except aiosqlite.Error:
                    await db.execute("ROLLBACK")
                    raise

        except aiosqlite.Error as e:
            logger.error("Failed to update state set", key=key, error=str(e))
            raise DatabaseError(f"Failed to add to state set '{key}': {e}") from e

    # =========================================================================
    # Settings and bookkeeping
    # =========================================================================

    async def get_settings(self) -> UserSettings:
        """Load the user settings blob, sanitizing bad values.

        A missing or unreadable blob yields default settings (rule-only mode).
        """
        raw = await self.get_state(SETTINGS_KEY)
        if not raw:
            return UserSettings()
        try:
            data = json.loads(raw)
            if not isinstance(data, dict):
                raise ValueError(f"expected object, got {type(data).__name__}")
            return UserSettings(**data)
        except (ValueError, ValidationError) as e:
            logger.warning("settings_blob_invalid", error=str(e))
            return UserSettings()

    async def save_settings(self, settings: UserSettings) -> None:
        """Persist the user settings blob."""
        await self.set_state(SETTINGS_KEY, settings.model_dump_json())

    async def set_last_check(self, when: datetime | None = None) -> None:
        """Record the completion time of the latest poll cycle."""
        await self.set_state(LAST_CHECK_KEY, (when or datetime.now(UTC)).isoformat())

    async def get_last_check(self) -> datetime | None:
        """Return the completion time of the latest poll cycle, if any."""
        raw = await self.get_state(LAST_CHECK_KEY)
        if not raw:
            return None
        try:
            return datetime.fromisoformat(raw)
        except ValueError:
            logger.warning("invalid_last_check", value=raw)
            return None


def _decode_string_list(key: str, raw: str | None) -> list[str]:
    """Decode a stored JSON array of strings, tolerating corruption."""
    if not raw:
        return []
    try:
        data = json.loads(raw)
    except ValueError:
        logger.warning("state_list_corrupt", key=key)
        return []
    if not isinstance(data, list):
        logger.warning("state_list_wrong_type", key=key, type=type(data).__name__)
        return []
    return [str(item) for item in data]
