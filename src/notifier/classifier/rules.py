"""Deterministic rule-based classification.

RuleClassifier produces a (summary, tag) pair with no network dependency. It
is the whole classifier in rule-only mode (no AI credential) and the
fallback whenever the model call fails.

Tag selection walks TAG_RULES top-down against the lower-cased
"subject + text"; the first rule whose pattern matches wins, and text that
matches nothing is NO_ACTION_NEEDED. Patterns match on word boundaries so
"sign" doesn't fire on "design".

The module also holds CONTEXT_HINTS, fixed category summaries that the AI
classifier may substitute for an accepted model summary.

Usage:
    from notifier.classifier.rules import RuleClassifier

    result = RuleClassifier().classify(subject, sanitized_text)
    print(result.tag, result.summary)
"""

from __future__ import annotations

from dataclasses import dataclass

import regex

from notifier.classifier.types import METHOD_RULES, ClassificationResult, Tag
from notifier.core.logging import get_logger
from notifier.core.patterns import safe_search, safe_sub

logger = get_logger(__name__)

EMPTY_SUMMARY = "No readable content in this email."
DEFAULT_TAG = Tag.NO_ACTION_NEEDED

# Summary budgets (words)
SUMMARY_WORD_BUDGET = 25
SUMMARY_HARD_CAP = 35
NO_SENTENCE_TOKENS = 20

# A first sentence shorter than this borrows words from the next one
MIN_SUMMARY_CHARS = 20

ELLIPSIS = "…"


def _words(*phrases: str) -> regex.Pattern:
    """Compile phrases into one case-insensitive, word-bounded alternation."""
    alternation = "|".join(r"\s+".join(regex.escape(w) for w in p.split()) for p in phrases)
    return regex.compile(rf"\b(?:{alternation})\b", regex.IGNORECASE)


@dataclass(frozen=True, slots=True)
class TagRule:
    """One row of the tag cascade.

    Attributes:
        priority: Evaluation order (lower runs first, unique per table)
        tag: Tag assigned when the pattern matches
        pattern: Compiled keyword pattern
    """

    priority: int
    tag: Tag
    pattern: regex.Pattern


TAG_RULES: tuple[TagRule, ...] = (
    TagRule(
        priority=1,
        tag=Tag.URGENT,
        pattern=_words(
            "urgent",
            "urgently",
            "emergency",
            "deadline",
            "asap",
            "as soon as possible",
            "immediately",
            "immediate action",
            "time sensitive",
            "time-sensitive",
            "expires today",
            "expiring today",
            "final notice",
            "final reminder",
            "last chance",
            "account suspended",
            "account will be suspended",
            "verify your account",
            "security alert",
            "past due",
            "overdue",
            "critical",
        ),
    ),
    TagRule(
        priority=2,
        tag=Tag.ACTION_REQUIRED,
        pattern=_words(
            "please",
            "could you",
            "can you",
            "would you",
            "let me know",
            "let us know",
            "reply",
            "respond",
            "confirm",
            "rsvp",
            "meeting",
            "interview",
            "schedule",
            "sign",
            "submit",
            "approve",
            "approval",
            "review",
            "availability",
            "action required",
            "get back to",
            "your feedback",
            "fill out",
        ),
    ),
    TagRule(
        priority=3,
        tag=Tag.FYI,
        pattern=_words(
            "fyi",
            "for your information",
            "update",
            "updates",
            "announcement",
            "announcing",
            "newsletter",
            "digest",
            "heads up",
            "release notes",
            "no action needed",
            "no action required",
        ),
    ),
)


# Fixed summaries for recognizable message categories, first match wins
CONTEXT_HINTS: tuple[tuple[regex.Pattern, str], ...] = (
    # Auth / security
    (
        _words("one time password", "one-time password", "otp", "verification code", "use this code"),
        "One-time password received for account verification.",
    ),
    (
        _words("new sign-in", "new sign in", "new signin", "signed in", "login detected", "new device"),
        "New sign-in detected on your account; review if this was you.",
    ),
    (
        _words("google sign-in", "sign in to google account", "sign-in to google account"),
        "Google account sign-in detected; review activity if unexpected.",
    ),
    (
        _words("security alert", "unusual activity", "suspicious activity"),
        "Security alert on your account; review immediately.",
    ),
    (
        _words("password reset", "reset your password", "change your password"),
        "Password reset requested; take action if this was you.",
    ),
    (
        _words("verify your email", "email verification", "confirm your email"),
        "Email verification required to complete account setup.",
    ),
    # Account / access
    (
        _words("access request", "permission request", "requested access", "shared with you"),
        "Access request received; review and approve if appropriate.",
    ),
    (
        _words("new browser", "new location"),
        "New device or location used to access your account.",
    ),
    # Career / job
    (
        _words("interview", "hr", "recruiter", "hiring", "next round"),
        "Interview-related email; reply to confirm availability.",
    ),
    (
        _words("offer letter", "job offer", "we are pleased to offer"),
        "Job offer received; review details and respond.",
    ),
    (
        _words("regret to inform", "not selected", "application rejected"),
        "Application update received; no response required.",
    ),
    (
        _words("application status", "application update", "under review"),
        "Update on your job application status.",
    ),
    # Events / meetings
    (
        _words("meeting request", "schedule a call", "calendar invite"),
        "Meeting request received; reply to schedule or confirm.",
    ),
    (
        _words("rescheduled", "new time", "updated schedule"),
        "Meeting or event has been rescheduled; review updated details.",
    ),
    (
        _words("event", "meetup", "webinar", "conference", "join us"),
        "Event invitation received; reply if you want to attend.",
    ),
    # Payments / finance
    (
        _words("payment due", "outstanding amount", "due by", "overdue"),
        "Payment due; review and complete before the deadline.",
    ),
    (
        _words("invoice", "receipt", "payment confirmation", "transaction successful"),
        "Payment or invoice details received.",
    ),
    (
        _words("refund", "credited back", "refund initiated"),
        "Refund update received; check transaction details.",
    ),
    # Subscriptions
    (
        _words("subscription renewal", "renewal notice", "renews on"),
        "Subscription renewal notice received.",
    ),
    (
        _words("subscription cancelled", "cancellation confirmed"),
        "Subscription cancellation confirmed.",
    ),
    (
        _words("plan upgraded", "plan changed", "billing plan"),
        "Your service plan has been updated.",
    ),
    (
        _words("cancelled", "canceled"),
        "Meeting or event has been cancelled.",
    ),
    # Promotional
    (
        _words("special offer", "limited time offer", "discount", "sale", "deal"),
        "Promotional offer received; check details if interested.",
    ),
    (
        _words("introducing", "new launch", "we are excited to announce"),
        "Promotional announcement about a new product or feature.",
    ),
    # Informational
    (
        _words("newsletter", "weekly digest", "monthly update"),
        "Newsletter received; informational update.",
    ),
    (
        _words("policy update", "terms updated", "privacy policy"),
        "Policy update announced; review changes.",
    ),
    (
        _words("product update", "new feature", "feature release"),
        "Product update announced with new changes.",
    ),
    # Social
    (
        _words("thank you", "thanks for", "appreciate"),
        "Thank-you or appreciation message received.",
    ),
    (
        _words("congratulations", "congrats"),
        "Congratulations message received.",
    ),
)

# Sentence boundary: terminal punctuation followed by whitespace or end
SENTENCE_END = regex.compile(r"[.!?]+(?=\s|$)")
SENTENCE_SPLIT = regex.compile(r"(?<=[.!?])\s+")

FILLER_PATTERN = regex.compile(
    r"\b(?:i just wanted to|i wanted to|i am writing to|i'm writing to|"
    r"just|kindly|please|basically|actually)\b[ \t,]*",
    regex.IGNORECASE,
)
MULTI_SPACE = regex.compile(r"[ \t]{2,}")


def match_tag(subject: str, text: str) -> tuple[Tag, int | None]:
    """Run the tag cascade.

    Returns:
        Tuple of (tag, matched rule priority or None for the default)
    """
    haystack = f"{subject} {text}".lower()
    for rule in TAG_RULES:
        if safe_search(rule.pattern, haystack) is not None:
            return rule.tag, rule.priority
    return DEFAULT_TAG, None


def context_hint(subject: str, text: str) -> str | None:
    """Return the fixed summary for the first matching category, if any."""
    haystack = f"{subject} {text}".lower()
    for pattern, hint in CONTEXT_HINTS:
        if safe_search(pattern, haystack) is not None:
            return hint
    return None


def cap_words(text: str, limit: int) -> str:
    """Keep at most limit words, marking a cut with an ellipsis."""
    words = text.split()
    if len(words) <= limit:
        return " ".join(words)
    return " ".join(words[:limit]).rstrip(",;:") + ELLIPSIS


def _capitalize_first(text: str) -> str:
    for i, ch in enumerate(text):
        if ch.isalpha():
            return text[:i] + ch.upper() + text[i + 1 :]
    return text


def _compress(text: str) -> str:
    """Drop filler words; keep the original if nothing would be left."""
    compressed, changed = safe_sub(FILLER_PATTERN, "", text)
    if not changed:
        return text
    compressed, _ = safe_sub(MULTI_SPACE, " ", compressed)
    compressed = compressed.strip(" ,")
    return compressed if compressed.split() else text


def summarize(text: str) -> str:
    """Build an extractive summary from sanitized text.

    Starts from the first sentence, appending following sentences while the
    summary is shorter than MIN_SUMMARY_CHARS, then drops filler words and
    caps at SUMMARY_WORD_BUDGET words. Text without sentence punctuation
    falls back to its first NO_SENTENCE_TOKENS tokens.
    """
    text = text.strip()
    if not text:
        return EMPTY_SUMMARY

    if safe_search(SENTENCE_END, text) is None:
        return cap_words(text, NO_SENTENCE_TOKENS)

    sentences = [s for s in SENTENCE_SPLIT.split(text) if s.strip()]
    words = sentences[0].split()
    for sentence in sentences[1:]:
        if len(" ".join(words)) >= MIN_SUMMARY_CHARS or len(words) >= SUMMARY_WORD_BUDGET:
            break
        words.extend(sentence.split())

    summary = _capitalize_first(_compress(" ".join(words)))
    summary = cap_words(summary, SUMMARY_WORD_BUDGET)
    return cap_words(summary, SUMMARY_HARD_CAP)


class RuleClassifier:
    """Keyword-cascade classifier with extractive summaries.

    Pure and deterministic: identical (subject, text) always yields an
    identical result.
    """

    def classify(self, subject: str, sanitized_text: str) -> ClassificationResult:
        """Classify sanitized text.

        Args:
            subject: Email subject (used for tag matching only)
            sanitized_text: Output of the Sanitizer

        Returns:
            ClassificationResult with method 'rules'
        """
        if not sanitized_text or not sanitized_text.strip():
            return ClassificationResult(summary=EMPTY_SUMMARY, tag=DEFAULT_TAG, method=METHOD_RULES)

        tag, priority = match_tag(subject or "", sanitized_text)
        logger.debug("rule_tag_selected", tag=tag.value, priority=priority)

        return ClassificationResult(
            summary=summarize(sanitized_text),
            tag=tag,
            method=METHOD_RULES,
        )
