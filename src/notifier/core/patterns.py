"""Shared regex patterns and timeout-guarded helpers.

All regex operations on message content use the `regex` library with a
timeout so a pathological email can't stall a poll cycle (ReDoS).
Patterns here are used by the extractor, the sanitizer and the AI output
validator, which must agree on what a URL or a phone number looks like.
"""

from __future__ import annotations

from collections.abc import Callable

import regex

from notifier.core.logging import get_logger

logger = get_logger(__name__)

# Regex timeout in seconds (all match/sub calls on message content use it)
REGEX_TIMEOUT = 1.0

# Minimum digits for a digit run to count as phone-shaped
MIN_PHONE_DIGITS = 7

URL_PATTERN = regex.compile(r"(?:https?://|www\.)\S+", regex.IGNORECASE)

# Loose digit grouping: optional +, optional parens, digits separated by
# spaces, dots, dashes or parens. False positives (dates, order numbers)
# are accepted. Digits touching an @ belong to an address and are skipped.
PHONE_CANDIDATE_PATTERN = regex.compile(r"(?<![\w+@])\+?\(?\d[\d \t().\-]{5,}\d(?![\w@])")

URL_TOKEN = "[URL]"
PHONE_TOKEN = "[PHONE]"


def safe_sub(
    pattern: regex.Pattern,
    repl: str | Callable[[regex.Match], str],
    text: str,
) -> tuple[str, bool]:
    """Perform a regex substitution with timeout.

    On timeout the input is returned unchanged and a warning logged.

    Returns:
        Tuple of (result_text, was_modified)
    """
    try:
        result = pattern.sub(repl, text, timeout=REGEX_TIMEOUT)
        return result, result != text
    except TimeoutError:
        logger.warning("Regex timeout during substitution", pattern=pattern.pattern[:50])
        return text, False


def safe_search(pattern: regex.Pattern, text: str) -> regex.Match | None:
    """Search with timeout; a timeout is reported as no match."""
    try:
        return pattern.search(text, timeout=REGEX_TIMEOUT)
    except TimeoutError:
        logger.warning("Regex timeout during search", pattern=pattern.pattern[:50])
        return None


def _is_phone(candidate: str) -> bool:
    return sum(ch.isdigit() for ch in candidate) >= MIN_PHONE_DIGITS


def redact_phones(text: str) -> tuple[str, bool]:
    """Replace phone-shaped digit groups with the [PHONE] token."""

    def _replace(match: regex.Match) -> str:
        candidate = match.group(0)
        return PHONE_TOKEN if _is_phone(candidate) else candidate

    return safe_sub(PHONE_CANDIDATE_PATTERN, _replace, text)


def contains_phone(text: str) -> bool:
    """Whether text contains a phone-shaped digit group."""
    try:
        return any(
            _is_phone(m.group(0))
            for m in PHONE_CANDIDATE_PATTERN.finditer(text, timeout=REGEX_TIMEOUT)
        )
    except TimeoutError:
        logger.warning("Regex timeout during phone scan")
        return False


def contains_url(text: str) -> bool:
    """Whether text contains a raw URL."""
    return safe_search(URL_PATTERN, text) is not None
