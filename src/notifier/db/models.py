"""SQLite schema and initialization for the notifier state store.

The notifier persists very little: a key-value table holding the processed
message-id set, the user settings blob and the last-check timestamp.

Usage:
    from notifier.db.models import init_database

    await init_database("data/notifier.db")
"""

import stat
from pathlib import Path

import aiosqlite

from notifier.core.errors import DatabaseError
from notifier.core.logging import get_logger

logger = get_logger(__name__)

# Schema version for migrations (increment when schema changes)
SCHEMA_VERSION = 1

SCHEMA_SQL = """
-- MUST be set before creating tables. Persists across connections.
PRAGMA journal_mode=WAL;

-- Key-value state persistence
CREATE TABLE IF NOT EXISTS agent_state (
    key TEXT PRIMARY KEY,
    value TEXT,
    updated_at DATETIME DEFAULT CURRENT_TIMESTAMP
);
-- Keys: 'processed_messages' (JSON array of message ids),
--       'settings' (JSON object), 'last_check' (ISO timestamp)
"""

REQUIRED_TABLES = ("agent_state",)


async def init_database(db_path: str | Path) -> None:
    """Initialize the SQLite database with schema and WAL mode.

    Creates the database file and its parent directory if needed. The file
    is chmod 0600 because the settings blob may hold an API key.

    Args:
        db_path: Path to the SQLite database file

    Raises:
        DatabaseError: If database initialization fails
    """
    db_path = Path(db_path)
    db_path.parent.mkdir(parents=True, exist_ok=True)

    try:
        async with aiosqlite.connect(db_path) as db:
            await db.execute("PRAGMA journal_mode=WAL")
            journal_mode = await db.execute("PRAGMA journal_mode")
            mode = await journal_mode.fetchone()
            if mode and mode[0].lower() != "wal":
                logger.warning(
                    "WAL mode not enabled",
                    requested="wal",
                    actual=mode[0],
                    db_path=str(db_path),
                )

            await db.executescript(SCHEMA_SQL)
            await db.commit()

        db_path.chmod(stat.S_IRUSR | stat.S_IWUSR)
        for suffix in ["-wal", "-shm"]:
            wal_file = db_path.with_suffix(db_path.suffix + suffix)
            if wal_file.exists():
                wal_file.chmod(stat.S_IRUSR | stat.S_IWUSR)

        logger.info(
            "Database initialized",
            db_path=str(db_path),
            schema_version=SCHEMA_VERSION,
        )

    except aiosqlite.Error as e:
        logger.error(
            "Database initialization failed",
            db_path=str(db_path),
            error=str(e),
        )
        raise DatabaseError(
            f"Failed to initialize database at {db_path}: {e}. "
            "Check that the directory is writable and the database file is not corrupted."
        ) from e


async def verify_schema(db_path: str | Path) -> bool:
    """Check that all required tables exist.

    Returns:
        True if all tables exist, False otherwise (including on error)
    """
    try:
        async with aiosqlite.connect(db_path) as db:
            cursor = await db.execute("SELECT name FROM sqlite_master WHERE type='table'")
            existing_tables = {row[0] for row in await cursor.fetchall()}
    except aiosqlite.Error as e:
        logger.error("Schema verification failed", db_path=str(db_path), error=str(e))
        return False

    missing = set(REQUIRED_TABLES) - existing_tables
    if missing:
        logger.warning("Missing database tables", missing=sorted(missing), db_path=str(db_path))
        return False
    return True
