"""Body extraction from Gmail MIME part trees.

Gmail's `format=full` payload is a tree of parts: each node has a
`mimeType`, optional inline `body.data` (URL-safe base64) and ordered child
`parts`. ContentExtractor walks that tree and returns one best-effort
plain-text body:

1. A leaf with data is decoded; text/plain is returned verbatim,
   text/html is stripped to text.
2. At each level, a text/plain sibling wins over text/html regardless of
   order; html is used only when no plain sibling exists.
3. Otherwise children are searched recursively, first non-empty wins.

Extraction never raises: undecodable parts and malformed payloads yield
empty text so one broken message can't abort a poll cycle.

Usage:
    from notifier.mail.extractor import ContentExtractor

    extractor = ContentExtractor()
    email = extractor.extract_email(gmail_message)
    print(email.sender.display, email.body)
"""

from __future__ import annotations

import base64
import binascii
import html
from dataclasses import dataclass
from email.utils import parseaddr
from typing import Any

import regex

from notifier.core.errors import DecodeError, ExtractionError
from notifier.core.logging import get_logger
from notifier.core.patterns import safe_sub

logger = get_logger(__name__)

PLAIN = "text/plain"
HTML = "text/html"

# Guard against pathological nesting; real messages are a few levels deep
MAX_PART_DEPTH = 50

DEFAULT_SUBJECT = "(No Subject)"

# HTML stripping
HTML_DROP_BLOCK_PATTERN = regex.compile(
    r"<(script|style|head)\b[^>]*>.*?</\1\s*>",
    regex.IGNORECASE | regex.DOTALL,
)
HTML_COMMENT_PATTERN = regex.compile(r"<!--.*?-->", regex.DOTALL)
HTML_BREAK_PATTERN = regex.compile(
    r"<br\s*/?>|</(?:p|div|li|tr|h[1-6]|table|blockquote)\s*>",
    regex.IGNORECASE,
)
HTML_TAG_PATTERN = regex.compile(r"<[^>]+>")
HORIZONTAL_SPACE_PATTERN = regex.compile(r"[ \t\r\f\v ]+")
BLANK_LINES_PATTERN = regex.compile(r"\n\s*\n+")
CHARSET_PATTERN = regex.compile(r"charset\s*=\s*\"?([\w.:-]+)", regex.IGNORECASE)


@dataclass(frozen=True, slots=True)
class Sender:
    """Parsed From header."""

    name: str
    email: str

    @property
    def display(self) -> str:
        """Best human-readable label: name, then address, then 'Unknown'."""
        return self.name or self.email or "Unknown"


@dataclass(frozen=True, slots=True)
class ExtractedEmail:
    """A message reduced to the fields the pipeline needs.

    Attributes:
        id: Gmail message ID
        thread_id: Gmail thread ID (may be empty)
        subject: Subject header, "(No Subject)" when absent
        sender: Parsed From header
        date: Raw Date header
        snippet: Gmail-provided preview text
        body: Best-effort plain-text body ("" when none could be extracted)
    """

    id: str
    thread_id: str
    subject: str
    sender: Sender
    date: str
    snippet: str
    body: str


def decode_part_data(data: str, charset: str = "utf-8") -> str:
    """Decode a URL-safe base64 body payload.

    Missing padding is repaired. Raises DecodeError on bad base64, an
    unknown charset or bytes invalid for the charset.
    """
    padded = data + "=" * (-len(data) % 4)
    try:
        raw = base64.urlsafe_b64decode(padded.encode("ascii"))
    except (binascii.Error, ValueError) as e:
        raise DecodeError(f"Invalid base64 body data: {e}") from e

    try:
        return raw.decode(charset)
    except (LookupError, UnicodeDecodeError) as e:
        raise DecodeError(f"Cannot decode body as {charset}: {e}") from e


def strip_html(markup: str) -> str:
    """Return visible text from an HTML document.

    Script/style blocks and comments are dropped, block-level closing tags
    become line breaks, remaining tags are removed, entities decoded and
    whitespace collapsed.
    """
    text, _ = safe_sub(HTML_DROP_BLOCK_PATTERN, " ", markup)
    text, _ = safe_sub(HTML_COMMENT_PATTERN, " ", text)
    text, _ = safe_sub(HTML_BREAK_PATTERN, "\n", text)
    text, _ = safe_sub(HTML_TAG_PATTERN, " ", text)
    text = html.unescape(text)
    text, _ = safe_sub(HORIZONTAL_SPACE_PATTERN, " ", text)
    text = "\n".join(line.strip() for line in text.split("\n"))
    text, _ = safe_sub(BLANK_LINES_PATTERN, "\n\n", text)
    return text.strip()


def find_header(headers: list[dict[str, Any]] | None, name: str) -> str:
    """Case-insensitive header lookup; returns "" when absent."""
    wanted = name.lower()
    for header in headers or []:
        if str(header.get("name", "")).lower() == wanted:
            return str(header.get("value", ""))
    return ""


def parse_sender(value: str) -> Sender:
    """Parse a From header into name and address.

    Falls back to the raw header value as the address when it doesn't
    parse (e.g. a bare display name).
    """
    name, address = parseaddr(value)
    if not address:
        return Sender(name=name.strip(), email=value.strip())
    return Sender(name=name.strip(), email=address.strip())


def message_payload(message: dict[str, Any]) -> dict[str, Any]:
    """Return the MIME payload of a Gmail message resource.

    Raises:
        ExtractionError: If the message has no payload dict
    """
    payload = message.get("payload")
    if not isinstance(payload, dict):
        raise ExtractionError("No payload in message", message_id=str(message.get("id", "")))
    return payload


class ContentExtractor:
    """Walks a MIME part tree and yields a single plain-text body."""

    def extract_body(self, root: dict[str, Any] | None) -> str:
        """Extract the best-effort plain-text body from a part tree.

        Args:
            root: Gmail `payload` dict (or any part)

        Returns:
            Decoded text, or "" if the tree has no textual leaf
        """
        if not isinstance(root, dict):
            return ""
        return self._extract(root, depth=0)

    def extract_email(self, message: dict[str, Any]) -> ExtractedEmail:
        """Build an ExtractedEmail from a full Gmail message resource.

        Missing headers and bodies are tolerated; the result always exists.
        """
        message_id = str(message.get("id", ""))
        try:
            payload = message_payload(message)
        except ExtractionError as e:
            logger.debug("message_payload_missing", error=str(e), message_id=e.message_id)
            payload = {}

        headers = payload.get("headers")
        subject = find_header(headers, "Subject").strip() or DEFAULT_SUBJECT

        body = self.extract_body(payload)
        if not body:
            logger.debug("message_body_empty", message_id=message_id)

        return ExtractedEmail(
            id=message_id,
            thread_id=str(message.get("threadId", "")),
            subject=subject,
            sender=parse_sender(find_header(headers, "From")),
            date=find_header(headers, "Date"),
            snippet=html.unescape(str(message.get("snippet", ""))),
            body=body,
        )

    def _extract(self, part: dict[str, Any], depth: int) -> str:
        if depth > MAX_PART_DEPTH:
            logger.warning("mime_tree_too_deep", max_depth=MAX_PART_DEPTH)
            return ""

        mime_type = str(part.get("mimeType", "")).lower()
        if _has_data(part) and mime_type in (PLAIN, HTML):
            return self._decode_leaf(part)

        children = [p for p in part.get("parts") or [] if isinstance(p, dict)]
        if not children:
            return ""

        # Plain wins over html at the same level, whatever the sibling order
        for wanted in (PLAIN, HTML):
            for child in children:
                if str(child.get("mimeType", "")).lower() == wanted and _has_data(child):
                    text = self._decode_leaf(child)
                    if text:
                        return text

        for child in children:
            nested = self._extract(child, depth + 1)
            if nested:
                return nested

        return ""

    def _decode_leaf(self, part: dict[str, Any]) -> str:
        charset = _part_charset(part)
        try:
            content = decode_part_data(part["body"]["data"], charset)
        except DecodeError as e:
            logger.debug(
                "body_part_decode_failed",
                mime_type=part.get("mimeType"),
                part_id=part.get("partId"),
                error=str(e),
            )
            return ""

        if str(part.get("mimeType", "")).lower() == HTML:
            return strip_html(content)
        return content


def _has_data(part: dict[str, Any]) -> bool:
    body = part.get("body")
    return isinstance(body, dict) and isinstance(body.get("data"), str) and bool(body["data"])


def _part_charset(part: dict[str, Any]) -> str:
    content_type = find_header(part.get("headers"), "Content-Type")
    match = CHARSET_PATTERN.search(content_type) if content_type else None
    return match.group(1) if match else "utf-8"
