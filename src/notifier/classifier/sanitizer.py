"""Email body sanitization pipeline.

This module turns an extracted email body into the bounded, noise-free text
the classifiers see. Stages run strictly in order, since truncating or
collapsing first would hide the blocks later stages need to find:

1. Remove signature/footer blocks (through end of content)
2. Remove quoted replies and forwarded blocks (through end of content)
3. Redact URLs and phone-shaped digit groups ([URL], [PHONE])
4. Drop disallowed characters and normalize whitespace
5. Remove leading greeting lines and trailing closing lines
6. Truncate to 400 whitespace tokens joined by single spaces

The output never has more characters or tokens than the input, and
sanitize(sanitize(x)) == sanitize(x).

All regex operations use the `regex` library with a timeout; a stage whose
regex times out is skipped with a warning and the pipeline continues.

Usage:
    from notifier.classifier.sanitizer import Sanitizer

    sanitizer = Sanitizer()
    text = sanitizer.sanitize(email.body)

    # With metadata for debugging
    result = sanitizer.sanitize_with_details(email.body)
    print(result.steps_applied)
"""

from __future__ import annotations

from dataclasses import dataclass, field

import regex

from notifier.core.logging import get_logger
from notifier.core.patterns import (
    PHONE_TOKEN,
    REGEX_TIMEOUT,
    URL_PATTERN,
    URL_TOKEN,
    redact_phones,
    safe_search,
    safe_sub,
)

logger = get_logger(__name__)

MAX_TOKENS = 400

# Greeting lines longer than this are treated as content
MAX_GREETING_WORDS = 6

# Later stages can expose a marker an earlier stage would have removed
# (e.g. a dropped emoji joining "--" onto its own line); passes repeat until
# the text is stable.
MAX_PASSES = 4


# =============================================================================
# Compiled Regex Patterns
# Each marker pattern locates the start of a block that runs to end of content
# =============================================================================

# Step 1: Signature/footer markers
SIGNATURE_MARKERS = [
    # "--" delimiter alone on a line
    regex.compile(r"^[ \t]*--[ \t]*$", regex.MULTILINE),
    # Sign-off alone on a line, after some content
    regex.compile(
        r"\n[ \t]*(?:Best regards|Kind regards|Warm regards|Regards|Sincerely|"
        r"Cheers|Thanks|Best wishes)[ \t]*[,.!]?[ \t]*$",
        regex.MULTILINE | regex.IGNORECASE,
    ),
    regex.compile(r"^[ \t]*Sent from my\b", regex.MULTILINE | regex.IGNORECASE),
    regex.compile(r"^[ \t]*Get Outlook for\b", regex.MULTILINE | regex.IGNORECASE),
    regex.compile(r"^[ \t]*_{5,}", regex.MULTILINE),
]

# Step 2: Quoted reply / forwarded markers
QUOTE_MARKERS = [
    # "On <date>, <name> wrote:" (clients wrap it over at most two lines)
    regex.compile(r"^[ \t]*On\s[^\n]*(?:\n[^\n]*)?\bwrote:", regex.MULTILINE),
    regex.compile(r"^[ \t]*>", regex.MULTILINE),
    regex.compile(r"^[ \t]*From:[ \t]", regex.MULTILINE),
    regex.compile(r"-{2,}[ \t]*Original Message[ \t]*-{2,}", regex.IGNORECASE),
    regex.compile(r"-{2,}[ \t]*Forwarded message[ \t]*-{2,}", regex.IGNORECASE),
    regex.compile(r"^[ \t]*Begin forwarded message:", regex.MULTILINE | regex.IGNORECASE),
]

# Step 4: Character and whitespace normalization
# Allowed: letters, marks, digits, punctuation, currency and math symbols, whitespace
DISALLOWED_CHARS = regex.compile(r"[^\p{L}\p{M}\p{N}\p{P}\p{Sc}\p{Sm}\s]+")
LINE_BREAKS = regex.compile(r"\r\n?")
HORIZONTAL_SPACE = regex.compile(r"[^\S\n]+")
EXCESSIVE_NEWLINES = regex.compile(r"\n{3,}")

# Step 5: Greeting and closing lines
GREETING_LINE = regex.compile(
    r"^(?:hi|hello|hey|dear|greetings|good (?:morning|afternoon|evening)|"
    r"to whom it may concern)\b",
    regex.IGNORECASE,
)
CLOSING_LINE = regex.compile(
    r"(?:thanks|thank you|thanks again|many thanks|thanks in advance|"
    r"thank you in advance|talk soon|speak soon|see you soon|take care|"
    r"have a (?:great|good|nice|lovely) (?:day|week|weekend|evening|one)|"
    r"looking forward to (?:hearing from you|your reply|your response))"
    r"[\s,.!]*",
    regex.IGNORECASE,
)


def _cut_at_first_marker(patterns: list[regex.Pattern], text: str) -> tuple[str, bool]:
    """Truncate text at the earliest match of any marker pattern."""
    cut = len(text)
    for pattern in patterns:
        match = safe_search(pattern, text)
        if match is not None:
            cut = min(cut, match.start())
    if cut == len(text):
        return text, False
    return text[:cut], True


def _fullmatch(pattern: regex.Pattern, text: str) -> bool:
    try:
        return pattern.fullmatch(text, timeout=REGEX_TIMEOUT) is not None
    except TimeoutError:
        logger.warning("Regex timeout during line match", pattern=pattern.pattern[:50])
        return False


@dataclass
class SanitizeResult:
    """Result of sanitization with metadata for debugging.

    Attributes:
        text: The sanitized text
        original_length: Length of the input text
        was_truncated: Whether the token cap was hit
        steps_applied: Stages that modified the text, in order of first effect
    """

    text: str
    original_length: int
    was_truncated: bool
    steps_applied: list[str] = field(default_factory=list)


class Sanitizer:
    """Cleans an email body through the 6-stage pipeline.

    Attributes:
        max_tokens: Token cap for the output (default 400)
    """

    def __init__(self, max_tokens: int = MAX_TOKENS):
        self.max_tokens = max_tokens

    def sanitize(self, text: str | None) -> str:
        """Return the sanitized form of text ("" for empty input)."""
        return self.sanitize_with_details(text).text

    def sanitize_with_details(self, text: str | None) -> SanitizeResult:
        """Sanitize text and report which stages changed it.

        Args:
            text: Extracted email body (None is treated as empty)

        Returns:
            SanitizeResult with sanitized text and metadata
        """
        if not text:
            return SanitizeResult(text="", original_length=0, was_truncated=False)

        steps_applied: list[str] = []
        was_truncated = False
        current = text

        for _ in range(MAX_PASSES):
            result, steps, truncated = self._run_stages(current)
            was_truncated = was_truncated or truncated
            for step in steps:
                if step not in steps_applied:
                    steps_applied.append(step)
            if result == current:
                break
            current = result
        else:
            logger.debug("sanitize_not_stable", passes=MAX_PASSES)

        return SanitizeResult(
            text=current,
            original_length=len(text),
            was_truncated=was_truncated,
            steps_applied=steps_applied,
        )

    def _run_stages(self, text: str) -> tuple[str, list[str], bool]:
        steps: list[str] = []
        current = text

        stages = [
            ("remove_signatures", self._step_remove_signatures),
            ("remove_quotes", self._step_remove_quotes),
            ("redact", self._step_redact),
            ("normalize", self._step_normalize),
            ("remove_greetings", self._step_remove_greetings),
        ]
        for name, stage in stages:
            current, applied = stage(current)
            if applied:
                steps.append(name)

        tokens = current.split()
        truncated = len(tokens) > self.max_tokens
        if truncated:
            steps.append("truncate")
        current = " ".join(tokens[: self.max_tokens])
        return current, steps, truncated

    def _step_remove_signatures(self, text: str) -> tuple[str, bool]:
        """Step 1: Cut at the first signature or footer marker."""
        return _cut_at_first_marker(SIGNATURE_MARKERS, text)

    def _step_remove_quotes(self, text: str) -> tuple[str, bool]:
        """Step 2: Cut at the first quoted-reply or forwarded-message marker."""
        return _cut_at_first_marker(QUOTE_MARKERS, text)

    def _step_redact(self, text: str) -> tuple[str, bool]:
        """Step 3: Replace URLs and phone-shaped digit groups with tokens."""
        current, urls = safe_sub(URL_PATTERN, URL_TOKEN, text)
        current, phones = redact_phones(current)
        if urls or phones:
            logger.debug(
                "content_redacted",
                urls=current.count(URL_TOKEN),
                phones=current.count(PHONE_TOKEN),
            )
        return current, urls or phones

    def _step_normalize(self, text: str) -> tuple[str, bool]:
        """Step 4: Drop disallowed characters, collapse whitespace.

        Line structure survives this stage so greeting/closing removal can
        work line by line; at most one blank line is kept between blocks.
        """
        cleaned, _ = safe_sub(LINE_BREAKS, "\n", text)
        cleaned, _ = safe_sub(DISALLOWED_CHARS, "", cleaned)
        cleaned, _ = safe_sub(HORIZONTAL_SPACE, " ", cleaned)
        cleaned = "\n".join(line.strip() for line in cleaned.split("\n"))
        cleaned, _ = safe_sub(EXCESSIVE_NEWLINES, "\n\n", cleaned)
        cleaned = cleaned.strip()
        return cleaned, cleaned != text

    def _step_remove_greetings(self, text: str) -> tuple[str, bool]:
        """Step 5: Drop short leading greetings and trailing closings.

        A greeting or closing is only removed while other content remains,
        so a one-line body is never reduced by this stage.
        """
        lines = text.split("\n")
        original_count = len(lines)

        while len(lines) > 1 and (not lines[0] or self._is_greeting(lines[0])):
            lines.pop(0)
        while len(lines) > 1 and (not lines[-1] or _fullmatch(CLOSING_LINE, lines[-1])):
            lines.pop()

        if len(lines) == original_count:
            return text, False
        return "\n".join(lines).strip(), True

    @staticmethod
    def _is_greeting(line: str) -> bool:
        return len(line.split()) <= MAX_GREETING_WORDS and safe_search(GREETING_LINE, line) is not None


def sanitize(text: str | None) -> str:
    """Convenience function to sanitize text with default settings."""
    return Sanitizer().sanitize(text)
