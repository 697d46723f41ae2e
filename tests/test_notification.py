"""Tests for notification building and console delivery."""

import io

import pytest
from rich.console import Console

from notifier.classifier.types import ClassificationResult, Tag
from notifier.engine.notification import (
    ConsoleNotifier,
    Notification,
    build_notification,
    notification_id,
)
from notifier.mail.extractor import ExtractedEmail, Sender


def _make_email(msg_id: str = "m1", name: str = "Jane Doe", address: str = "jane@example.com"):
    return ExtractedEmail(
        id=msg_id,
        thread_id="t1",
        subject="Interview",
        sender=Sender(name=name, email=address),
        date="",
        snippet="",
        body="",
    )


@pytest.fixture
def console_output() -> io.StringIO:
    """Buffer capturing console output."""
    return io.StringIO()


@pytest.fixture
def notifier(console_output: io.StringIO) -> ConsoleNotifier:
    """Return a ConsoleNotifier writing to a buffer."""
    return ConsoleNotifier(Console(file=console_output, width=120, force_terminal=False))


class TestBuildNotification:
    """Tests for build_notification."""

    def test_title_and_body(self) -> None:
        """Test the title and the two-line body."""
        result = ClassificationResult(summary="Confirm the interview slot.", tag=Tag.ACTION_REQUIRED)
        notification = build_notification(_make_email(), result)

        assert notification.id == "gmail-m1"
        assert notification.title == "New Email from Jane Doe"
        assert notification.body == "Confirm the interview slot.\nAction Required"

    def test_reply_taxonomy_label(self) -> None:
        """Test that the reply taxonomy changes the tag label."""
        result = ClassificationResult(summary="Thanks for the update.", tag=Tag.NO_ACTION_NEEDED)
        notification = build_notification(_make_email(), result, taxonomy="reply")
        assert notification.body.endswith("\nNo Reply Needed")

    def test_sender_falls_back_to_address(self) -> None:
        """Test that a nameless sender is shown by address."""
        result = ClassificationResult(summary="Receipt attached.", tag=Tag.FYI)
        notification = build_notification(_make_email(name=""), result)
        assert notification.title == "New Email from jane@example.com"

    def test_notification_id_is_stable(self) -> None:
        """Test that the id depends only on the message id."""
        assert notification_id("abc") == notification_id("abc") == "gmail-abc"


class TestConsoleNotifier:
    """Tests for ConsoleNotifier."""

    @pytest.mark.asyncio
    async def test_prints_notification(
        self, notifier: ConsoleNotifier, console_output: io.StringIO
    ) -> None:
        """Test that title, summary and label are printed."""
        await notifier.notify(Notification("gmail-m1", "New Email from Jane", "Summary.\nUrgent"))
        output = console_output.getvalue()
        assert "New Email from Jane" in output
        assert "Summary." in output
        assert "Urgent" in output

    @pytest.mark.asyncio
    async def test_same_id_replaces(
        self, notifier: ConsoleNotifier, console_output: io.StringIO
    ) -> None:
        """Test that redelivering an id updates instead of duplicating."""
        await notifier.notify(Notification("gmail-m1", "New Email from Jane", "First.\nFYI"))
        await notifier.notify(Notification("gmail-m1", "New Email from Jane", "Second.\nFYI"))

        assert list(notifier.delivered) == ["gmail-m1"]
        assert notifier.delivered["gmail-m1"].body == "Second.\nFYI"
        assert "(updated)" in console_output.getvalue()

    @pytest.mark.asyncio
    async def test_markup_in_content_is_escaped(
        self, notifier: ConsoleNotifier, console_output: io.StringIO
    ) -> None:
        """Test that rich markup in email content is printed literally."""
        await notifier.notify(Notification("gmail-m2", "New Email from [bold]x[/bold]", "[red]hi\nFYI"))
        output = console_output.getvalue()
        assert "[bold]x[/bold]" in output
        assert "[red]hi" in output
