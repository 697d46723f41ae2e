"""Email classification components.

This package turns an extracted body into a (summary, tag) pair:
- Sanitizer pipeline for preparing email bodies
- Rule classifier (keyword cascade + extractive summary)
- AI classifier with output-contract enforcement and rule fallback
- Prompts for the chat-completion model
"""

from notifier.classifier.ai_classifier import AIClassifier, check_contract, emergency_summary
from notifier.classifier.prompts import SYSTEM_PROMPT, build_messages, build_system_prompt
from notifier.classifier.rules import CONTEXT_HINTS, TAG_RULES, RuleClassifier, TagRule
from notifier.classifier.sanitizer import SanitizeResult, Sanitizer, sanitize
from notifier.classifier.types import ClassificationResult, Tag, parse_tag

__all__ = [
    # AI classifier
    "AIClassifier",
    "check_contract",
    "emergency_summary",
    # Prompts
    "SYSTEM_PROMPT",
    "build_messages",
    "build_system_prompt",
    # Rules
    "CONTEXT_HINTS",
    "TAG_RULES",
    "RuleClassifier",
    "TagRule",
    # Sanitizer
    "SanitizeResult",
    "Sanitizer",
    "sanitize",
    # Types
    "ClassificationResult",
    "Tag",
    "parse_tag",
]
