"""Classification types: the tag taxonomy and the classifier result.

Tags are stored canonically; the label shown to the user depends on the
configured taxonomy variant:

    taxonomy  ACTION_REQUIRED     NO_ACTION_NEEDED    invalid AI tag ->
    action    "Action Required"   "No Action Needed"  NO_ACTION_NEEDED
    reply     "Reply Required"    "No Reply Needed"   FYI
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Literal

import regex

Taxonomy = Literal["action", "reply"]

# How a result was produced
METHOD_RULES = "rules"
METHOD_AI = "ai"
METHOD_AI_REPAIRED = "ai_repaired"
METHOD_AI_FALLBACK = "ai_fallback"


class Tag(str, Enum):
    """What the recipient needs to do about a message."""

    URGENT = "Urgent"
    ACTION_REQUIRED = "ActionRequired"
    FYI = "FYI"
    NO_ACTION_NEEDED = "NoActionNeeded"

    def label(self, taxonomy: Taxonomy = "action") -> str:
        """Human-readable label under the given taxonomy."""
        return TAXONOMY_LABELS[taxonomy][self]


TAXONOMY_LABELS: dict[str, dict[Tag, str]] = {
    "action": {
        Tag.URGENT: "Urgent",
        Tag.ACTION_REQUIRED: "Action Required",
        Tag.FYI: "FYI",
        Tag.NO_ACTION_NEEDED: "No Action Needed",
    },
    "reply": {
        Tag.URGENT: "Urgent",
        Tag.ACTION_REQUIRED: "Reply Required",
        Tag.FYI: "FYI",
        Tag.NO_ACTION_NEEDED: "No Reply Needed",
    },
}

DEFAULT_TAGS: dict[str, Tag] = {
    "action": Tag.NO_ACTION_NEEDED,
    "reply": Tag.FYI,
}

_NON_ALNUM = regex.compile(r"[^a-z0-9]+")


def _normalize_tag_name(value: str) -> str:
    return _NON_ALNUM.sub("", value.lower())


# Canonical names plus every label from both vocabularies
_TAG_ALIASES: dict[str, Tag] = {_normalize_tag_name(tag.value): tag for tag in Tag}
for _labels in TAXONOMY_LABELS.values():
    _TAG_ALIASES.update({_normalize_tag_name(label): tag for tag, label in _labels.items()})


def parse_tag(value: Any) -> Tag | None:
    """Map a model-supplied tag string to a Tag.

    Case, spacing, underscores and hyphens are ignored, so "Action Required",
    "ACTION_REQUIRED" and "no-reply-needed" all resolve.

    Returns:
        The Tag, or None when value is not a known tag
    """
    if isinstance(value, Tag):
        return value
    if not isinstance(value, str):
        return None
    return _TAG_ALIASES.get(_normalize_tag_name(value))


@dataclass(frozen=True, slots=True)
class ClassificationResult:
    """Result of email classification.

    Attributes:
        summary: Short plain-text summary (at most 35 words)
        tag: Required-action tag
        method: How the result was produced ('rules', 'ai', 'ai_repaired',
            'ai_fallback')
    """

    summary: str
    tag: Tag
    method: str = METHOD_RULES

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-friendly dict."""
        return {"summary": self.summary, "tag": self.tag.value, "method": self.method}
