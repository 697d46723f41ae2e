"""Poll-cycle engine, duplicate suppression and notification delivery."""

from notifier.engine.dedup import DedupTracker
from notifier.engine.notification import (
    ConsoleNotifier,
    Notification,
    Notifier,
    build_notification,
)
from notifier.engine.poller import PollCycleResult, PollEngine

__all__ = [
    "DedupTracker",
    "ConsoleNotifier",
    "Notification",
    "Notifier",
    "build_notification",
    "PollCycleResult",
    "PollEngine",
]
