"""Prompts for the chat-completion classifier.

The system prompt states the output contract the AI classifier later
enforces: a short rephrased summary, no copied or identifying content, one
tag from the taxonomy, JSON only. Tag labels follow the configured taxonomy
so the model sees the same vocabulary the user does.

Usage:
    from notifier.classifier.prompts import build_messages

    messages = build_messages(subject, sanitized_text, taxonomy="action")
"""

from __future__ import annotations

from notifier.classifier.types import Tag, Taxonomy

MAX_SUMMARY_WORDS = 35

SYSTEM_PROMPT_TEMPLATE = """\
You summarize emails for desktop notifications.

TASK:
- Summarize what the email is about in at most 2 short lines ({max_words} words max).
- Rephrase in your own words. Do NOT copy sentences from the email.
- Make clear whether the reader needs to do anything.

NEVER INCLUDE:
- Quoted text, reply headers ("On ... wrote:", "From:") or forwarded content
- Signatures, sign-offs or greetings
- URLs, links, e-mail addresses or phone numbers

TAGS (pick exactly one):
- {urgent}: time-sensitive, action needed soon
- {action}: the reader must reply, confirm, approve or do something
- {fyi}: informational only
- {none}: confirmations, receipts or courtesy messages

OUTPUT (a single JSON object, nothing else):
{{"summary": "rephrased summary", "tag": "{urgent}|{action}|{fyi}|{none}"}}
"""


def build_system_prompt(taxonomy: Taxonomy = "action") -> str:
    """Render the system prompt with the taxonomy's tag labels."""
    return SYSTEM_PROMPT_TEMPLATE.format(
        max_words=MAX_SUMMARY_WORDS,
        urgent=Tag.URGENT.label(taxonomy),
        action=Tag.ACTION_REQUIRED.label(taxonomy),
        fyi=Tag.FYI.label(taxonomy),
        none=Tag.NO_ACTION_NEEDED.label(taxonomy),
    )


# Rendered with the default taxonomy; build_system_prompt() for others
SYSTEM_PROMPT = build_system_prompt()


def build_user_message(subject: str, sanitized_text: str) -> str:
    """Format the per-email user message."""
    return f"Subject: {subject}\nEmail Body:\n{sanitized_text}"


def build_messages(
    subject: str,
    sanitized_text: str,
    taxonomy: Taxonomy = "action",
) -> list[dict[str, str]]:
    """Build the chat message list for one classification call."""
    return [
        {"role": "system", "content": build_system_prompt(taxonomy)},
        {"role": "user", "content": build_user_message(subject, sanitized_text)},
    ]
