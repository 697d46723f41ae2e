"""State persistence for the mail notifier.

Usage:
    from notifier.db import StateStore

    store = StateStore("data/notifier.db")
    await store.initialize()
"""

from notifier.db.models import SCHEMA_VERSION, init_database, verify_schema
from notifier.db.store import (
    LAST_CHECK_KEY,
    PROCESSED_MESSAGES_KEY,
    SETTINGS_KEY,
    StateStore,
)

__all__ = [
    # Models
    "SCHEMA_VERSION",
    "init_database",
    "verify_schema",
    # Store
    "StateStore",
    "PROCESSED_MESSAGES_KEY",
    "SETTINGS_KEY",
    "LAST_CHECK_KEY",
]
