"""Notification records and delivery.

A Notification is keyed by the message id, so delivering the same message
twice replaces the earlier notification rather than stacking a second one.

Usage:
    from notifier.engine.notification import ConsoleNotifier, build_notification

    notification = build_notification(email, result, taxonomy="action")
    await ConsoleNotifier().notify(notification)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel

from notifier.core.logging import get_logger

if TYPE_CHECKING:
    from notifier.classifier.types import ClassificationResult, Taxonomy
    from notifier.mail.extractor import ExtractedEmail

logger = get_logger(__name__)

NOTIFICATION_ID_PREFIX = "gmail-"


@dataclass(frozen=True, slots=True)
class Notification:
    """A user-facing notification for one email."""

    id: str
    title: str
    body: str


def notification_id(message_id: str) -> str:
    """Stable notification id derived from the message id."""
    return f"{NOTIFICATION_ID_PREFIX}{message_id}"


def build_notification(
    email: ExtractedEmail,
    result: ClassificationResult,
    taxonomy: Taxonomy = "action",
) -> Notification:
    """Build the notification for a classified email."""
    return Notification(
        id=notification_id(email.id),
        title=f"New Email from {email.sender.display}",
        body=f"{result.summary}\n{result.tag.label(taxonomy)}",
    )


class Notifier(Protocol):
    """Delivers notifications to the user."""

    async def notify(self, notification: Notification) -> None: ...


class ConsoleNotifier:
    """Prints notifications to the terminal with rich.

    Tracks delivered ids; a repeated id is shown as an update of the earlier
    notification.
    """

    def __init__(self, console: Console | None = None):
        self._console = console or Console()
        self._delivered: dict[str, Notification] = {}

    @property
    def delivered(self) -> dict[str, Notification]:
        """Latest notification per id."""
        return dict(self._delivered)

    async def notify(self, notification: Notification) -> None:
        replaced = notification.id in self._delivered
        self._delivered[notification.id] = notification

        summary, _, label = notification.body.rpartition("\n")
        title = f"[bold]{escape(notification.title)}[/bold]"
        if replaced:
            title += " [dim](updated)[/dim]"
        self._console.print(
            Panel(f"{escape(summary)}\n[cyan]{escape(label)}[/cyan]", title=title, title_align="left")
        )
        logger.debug("notification_shown", notification_id=notification.id, replaced=replaced)
