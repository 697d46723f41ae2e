"""Tests for MIME body extraction.

Tests part-tree traversal (plain over html, nesting, depth guard), base64
and charset decoding, HTML stripping, and header parsing into ExtractedEmail.
"""

import base64
from typing import Any

import pytest

from notifier.core.errors import DecodeError, ExtractionError
from notifier.mail.extractor import (
    DEFAULT_SUBJECT,
    MAX_PART_DEPTH,
    ContentExtractor,
    decode_part_data,
    find_header,
    message_payload,
    parse_sender,
    strip_html,
)

# ---------------------------------------------------------------------------
# Sample data
# ---------------------------------------------------------------------------


def _b64(text: str, encoding: str = "utf-8") -> str:
    """Encode text the way Gmail does (URL-safe, unpadded)."""
    return base64.urlsafe_b64encode(text.encode(encoding)).decode("ascii").rstrip("=")


def _leaf(mime_type: str, text: str, headers: list[dict[str, str]] | None = None) -> dict[str, Any]:
    part: dict[str, Any] = {"mimeType": mime_type, "body": {"data": _b64(text)}}
    if headers is not None:
        part["headers"] = headers
    return part


def _multipart(*parts: dict[str, Any], mime_type: str = "multipart/alternative") -> dict[str, Any]:
    return {"mimeType": mime_type, "body": {"size": 0}, "parts": list(parts)}


def _make_message(
    msg_id: str = "m1",
    subject: str | None = "Quarterly report",
    sender: str = "Jane Doe <jane@example.com>",
    payload: dict[str, Any] | None = None,
    snippet: str = "Please send the report",
) -> dict[str, Any]:
    headers = [
        {"name": "From", "value": sender},
        {"name": "Date", "value": "Mon, 6 May 2024 09:00:00 +0000"},
    ]
    if subject is not None:
        headers.append({"name": "Subject", "value": subject})
    payload = payload if payload is not None else _leaf("text/plain", "Please send the report.")
    payload = {**payload, "headers": headers + payload.get("headers", [])}
    return {"id": msg_id, "threadId": "t1", "snippet": snippet, "payload": payload}


@pytest.fixture
def extractor() -> ContentExtractor:
    """Return a ContentExtractor."""
    return ContentExtractor()


# =============================================================================
# Part-tree traversal
# =============================================================================


class TestExtractBody:
    """Tests for ContentExtractor.extract_body."""

    def test_plain_sibling_wins_over_earlier_html(self, extractor: ContentExtractor) -> None:
        """Test that text/plain is chosen even when html comes first."""
        root = _multipart(_leaf("text/html", "<b>hi</b>"), _leaf("text/plain", "Hello world"))
        assert extractor.extract_body(root) == "Hello world"

    def test_html_used_when_no_plain(self, extractor: ContentExtractor) -> None:
        """Test that html is stripped and used when it is the only text part."""
        root = _multipart(_leaf("text/html", "<p>Hello <b>World</b></p>"))
        assert extractor.extract_body(root) == "Hello World"

    def test_single_leaf_root(self, extractor: ContentExtractor) -> None:
        """Test that a non-multipart payload is decoded directly."""
        assert extractor.extract_body(_leaf("text/plain", "Just text")) == "Just text"

    def test_nested_multipart(self, extractor: ContentExtractor) -> None:
        """Test recursion into multipart/alternative inside multipart/mixed."""
        root = _multipart(
            _multipart(_leaf("text/html", "<p>inner html</p>"), _leaf("text/plain", "inner plain")),
            {"mimeType": "application/pdf", "body": {"attachmentId": "a1", "size": 1024}},
            mime_type="multipart/mixed",
        )
        assert extractor.extract_body(root) == "inner plain"

    def test_first_non_empty_child_wins(self, extractor: ContentExtractor) -> None:
        """Test that children are searched in order and empty ones skipped."""
        root = _multipart(
            _multipart({"mimeType": "image/png", "body": {"attachmentId": "x"}}),
            _multipart(_leaf("text/plain", "second branch")),
            _multipart(_leaf("text/plain", "third branch")),
            mime_type="multipart/mixed",
        )
        assert extractor.extract_body(root) == "second branch"

    def test_no_textual_leaf_returns_empty(self, extractor: ContentExtractor) -> None:
        """Test that a tree with only attachments yields empty text."""
        root = _multipart(
            {"mimeType": "image/jpeg", "body": {"attachmentId": "a1"}},
            {"mimeType": "application/zip", "body": {"attachmentId": "a2"}},
            mime_type="multipart/mixed",
        )
        assert extractor.extract_body(root) == ""

    def test_invalid_base64_returns_empty(self, extractor: ContentExtractor) -> None:
        """Test that an undecodable part yields empty text instead of raising."""
        root = {"mimeType": "text/plain", "body": {"data": "!!!not base64!!!"}}
        assert extractor.extract_body(root) == ""

    def test_invalid_plain_falls_back_to_html(self, extractor: ContentExtractor) -> None:
        """Test that a broken plain sibling doesn't block a good html one."""
        root = _multipart(
            {"mimeType": "text/plain", "body": {"data": "@@@"}},
            _leaf("text/html", "<div>fallback</div>"),
        )
        assert extractor.extract_body(root) == "fallback"

    def test_non_dict_root_returns_empty(self, extractor: ContentExtractor) -> None:
        """Test that a missing payload is tolerated."""
        assert extractor.extract_body(None) == ""

    def test_depth_guard(self, extractor: ContentExtractor) -> None:
        """Test that pathologically deep trees stop at MAX_PART_DEPTH."""
        root: dict[str, Any] = _leaf("text/plain", "too deep")
        for _ in range(MAX_PART_DEPTH + 5):
            root = _multipart(root, mime_type="multipart/mixed")
        assert extractor.extract_body(root) == ""

    def test_charset_from_content_type(self, extractor: ContentExtractor) -> None:
        """Test that a part's declared charset is honoured."""
        part = {
            "mimeType": "text/plain",
            "headers": [{"name": "Content-Type", "value": 'text/plain; charset="iso-8859-1"'}],
            "body": {"data": _b64("café", encoding="latin-1")},
        }
        assert extractor.extract_body(part) == "café"


# =============================================================================
# Decoding helpers
# =============================================================================


class TestDecodePartData:
    """Tests for decode_part_data."""

    def test_decodes_unpadded_urlsafe(self) -> None:
        """Test that missing padding is repaired."""
        assert decode_part_data(_b64("ab?>")) == "ab?>"

    def test_bad_base64_raises(self) -> None:
        """Test that invalid base64 raises DecodeError."""
        with pytest.raises(DecodeError):
            decode_part_data("a")

    def test_unknown_charset_raises(self) -> None:
        """Test that an unknown charset raises DecodeError."""
        with pytest.raises(DecodeError):
            decode_part_data(_b64("hello"), charset="no-such-charset")

    def test_invalid_bytes_raise(self) -> None:
        """Test that bytes invalid for the charset raise DecodeError."""
        data = base64.urlsafe_b64encode(b"\xff\xfe\xfa").decode("ascii")
        with pytest.raises(DecodeError):
            decode_part_data(data)


class TestStripHtml:
    """Tests for strip_html."""

    def test_drops_script_and_style(self) -> None:
        """Test that script and style contents never reach the text."""
        markup = "<style>p {color: red}</style><script>alert(1)</script><p>Visible</p>"
        assert strip_html(markup) == "Visible"

    def test_breaks_become_newlines(self) -> None:
        """Test that block-level tags produce line breaks."""
        assert strip_html("<p>One</p><p>Two</p>line<br/>three") == "One\nTwo\nline\nthree"

    def test_decodes_entities(self) -> None:
        """Test that HTML entities are decoded."""
        assert strip_html("Tom &amp; Jerry") == "Tom & Jerry"

    def test_drops_comments(self) -> None:
        """Test that HTML comments are removed."""
        assert strip_html("a<!-- hidden -->b") == "a b"


# =============================================================================
# Headers and ExtractedEmail
# =============================================================================


class TestHeaders:
    """Tests for header helpers."""

    def test_find_header_case_insensitive(self) -> None:
        """Test that header names match case-insensitively."""
        headers = [{"name": "SUBJECT", "value": "Hello"}]
        assert find_header(headers, "subject") == "Hello"

    def test_find_header_missing(self) -> None:
        """Test that a missing header is an empty string."""
        assert find_header(None, "Subject") == ""

    def test_parse_sender_name_and_address(self) -> None:
        """Test a standard 'Name <address>' From header."""
        sender = parse_sender('"Doe, Jane" <jane@example.com>')
        assert sender.name == "Doe, Jane"
        assert sender.email == "jane@example.com"
        assert sender.display == "Doe, Jane"

    def test_parse_sender_bare_address(self) -> None:
        """Test that a bare address displays as the address."""
        sender = parse_sender("noreply@example.com")
        assert sender.name == ""
        assert sender.display == "noreply@example.com"

    def test_parse_sender_empty(self) -> None:
        """Test that an absent From header displays as Unknown."""
        assert parse_sender("").display == "Unknown"


class TestMessagePayload:
    """Tests for message_payload."""

    def test_returns_payload(self) -> None:
        """Test that the payload dict is returned as is."""
        payload = {"mimeType": "text/plain"}
        assert message_payload({"id": "m1", "payload": payload}) is payload

    @pytest.mark.parametrize("message", [{"id": "m1"}, {"id": "m1", "payload": "garbage"}])
    def test_missing_payload_raises(self, message: dict[str, Any]) -> None:
        """Test that a missing or non-dict payload carries the message id."""
        with pytest.raises(ExtractionError, match="No payload") as exc_info:
            message_payload(message)
        assert exc_info.value.message_id == "m1"


class TestExtractEmail:
    """Tests for ContentExtractor.extract_email."""

    def test_full_message(self, extractor: ContentExtractor) -> None:
        """Test that all fields are populated from a full message."""
        email = extractor.extract_email(_make_message())
        assert email.id == "m1"
        assert email.thread_id == "t1"
        assert email.subject == "Quarterly report"
        assert email.sender.email == "jane@example.com"
        assert email.date.startswith("Mon, 6 May 2024")
        assert email.body == "Please send the report."

    def test_missing_subject_uses_default(self, extractor: ContentExtractor) -> None:
        """Test that an absent Subject header becomes '(No Subject)'."""
        email = extractor.extract_email(_make_message(subject=None))
        assert email.subject == DEFAULT_SUBJECT

    def test_missing_payload(self, extractor: ContentExtractor) -> None:
        """Test that a message without payload still extracts."""
        email = extractor.extract_email({"id": "m2", "snippet": "Tom &amp; Jerry"})
        assert email.id == "m2"
        assert email.body == ""
        assert email.subject == DEFAULT_SUBJECT
        assert email.snippet == "Tom & Jerry"
        assert email.sender.display == "Unknown"
