"""Chat-completion classifier with output-contract enforcement.

Classification flow:
1. No credential or empty text -> RuleClassifier directly
2. One POST to the chat-completion endpoint, bounded by a timeout
3. Any transport problem (network, timeout, non-2xx, bad envelope,
   non-JSON or non-object content, unusable summary) -> RuleClassifier
   result with method 'ai_fallback'
4. The parsed summary is checked against the contract; a violation
   (too long, forbidden content, verbatim copy) swaps in an emergency
   summary built from the sanitized text, keeping the model's tag
5. Unknown tags fall back to the taxonomy default

The contract is enforced on every response, including ones the service
reports as successful.

Usage:
    from notifier.classifier.ai_classifier import AIClassifier

    classifier = AIClassifier(config.ai, taxonomy="action")
    result = await classifier.classify(subject, sanitized, credential=api_key)
    await classifier.aclose()
"""

from __future__ import annotations

import asyncio
import dataclasses
import json
from typing import Any

import httpx
import regex

from notifier.classifier.prompts import MAX_SUMMARY_WORDS, build_messages
from notifier.classifier.rules import ELLIPSIS, RuleClassifier, context_hint
from notifier.classifier.types import (
    DEFAULT_TAGS,
    METHOD_AI,
    METHOD_AI_FALLBACK,
    METHOD_AI_REPAIRED,
    ClassificationResult,
    Taxonomy,
    parse_tag,
)
from notifier.config_schema import AIConfig
from notifier.core.errors import ContractViolation, TransportError
from notifier.core.logging import get_logger
from notifier.core.patterns import (
    PHONE_TOKEN,
    URL_TOKEN,
    contains_phone,
    contains_url,
    safe_search,
)

logger = get_logger(__name__)

# Emergency summary limits
EMERGENCY_TOKENS = 15
EMERGENCY_MAX_CHARS = 150

# Summaries sharing this many leading characters with the input are copies
VERBATIM_PREFIX_CHARS = 50

# Shorter model summaries are treated as unusable
MIN_MODEL_SUMMARY_CHARS = 10

TERMINAL_PUNCTUATION = (".", "!", "?", ELLIPSIS)

FORBIDDEN_SUMMARY_PATTERNS = [
    # Quote markers and reply headers
    regex.compile(r"(?:^|\n)\s*>"),
    regex.compile(r"\bOn\s.{0,200}?\bwrote:", regex.DOTALL),
    regex.compile(r"\bFrom:", regex.IGNORECASE),
    regex.compile(r"\bSent from my\b", regex.IGNORECASE),
]

CODE_FENCE = regex.compile(r"^```(?:json)?\s*|\s*```$", regex.IGNORECASE)
WHITESPACE = regex.compile(r"\s+")


def emergency_summary(sanitized_text: str) -> str:
    """Deterministic summary from the first tokens of sanitized text.

    First EMERGENCY_TOKENS tokens, hard-truncated to EMERGENCY_MAX_CHARS
    with an ellipsis, always ending in terminal punctuation.
    """
    summary = " ".join(sanitized_text.split()[:EMERGENCY_TOKENS])
    if len(summary) > EMERGENCY_MAX_CHARS:
        summary = summary[: EMERGENCY_MAX_CHARS - len(ELLIPSIS)].rstrip() + ELLIPSIS
    summary = summary.rstrip(",;:- ")
    if not summary:
        return "Email received."
    if not summary.endswith(TERMINAL_PUNCTUATION):
        summary += "."
    return summary


def _normalize_for_overlap(text: str) -> str:
    return WHITESPACE.sub(" ", text.lower()).strip()


def check_contract(summary: str, sanitized_text: str, original_text: str | None = None) -> None:
    """Validate a model summary against the output contract.

    Raises:
        ContractViolation: With reason 'too_long', 'forbidden_content' or
            'verbatim_copy'
    """
    word_count = len(summary.split())
    if word_count > MAX_SUMMARY_WORDS:
        raise ContractViolation(
            f"Summary has {word_count} words (max {MAX_SUMMARY_WORDS})", reason="too_long"
        )

    if contains_url(summary) or contains_phone(summary):
        raise ContractViolation("Summary contains a URL or phone number", reason="forbidden_content")
    if URL_TOKEN in summary or PHONE_TOKEN in summary:
        raise ContractViolation("Summary contains a redaction token", reason="forbidden_content")
    for pattern in FORBIDDEN_SUMMARY_PATTERNS:
        if safe_search(pattern, summary) is not None:
            raise ContractViolation(
                "Summary contains quoted or signature content", reason="forbidden_content"
            )

    prefix = _normalize_for_overlap(summary)[:VERBATIM_PREFIX_CHARS]
    if len(prefix) >= VERBATIM_PREFIX_CHARS:
        for source in (sanitized_text, original_text):
            if source and prefix in _normalize_for_overlap(source):
                raise ContractViolation(
                    "Summary copies the email text verbatim", reason="verbatim_copy"
                )


def parse_model_content(content: str) -> dict[str, Any]:
    """Parse the model's message content into a JSON object.

    Raises:
        TransportError: If the content is not a JSON object
    """
    stripped = CODE_FENCE.sub("", content.strip())
    try:
        parsed = json.loads(stripped)
    except ValueError as e:
        raise TransportError(f"Model returned non-JSON content: {e}") from e
    if not isinstance(parsed, dict):
        raise TransportError(f"Model returned JSON {type(parsed).__name__}, expected object")
    return parsed


class AIClassifier:
    """Classifies emails with a chat-completion model, falling back to rules.

    Attributes:
        config: AI section of the app config
        taxonomy: Tag taxonomy variant ('action' or 'reply')
    """

    def __init__(
        self,
        config: AIConfig,
        taxonomy: Taxonomy = "action",
        rules: RuleClassifier | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        """Initialize the classifier.

        Args:
            config: AI configuration (endpoint, model, limits, timeout)
            taxonomy: Tag taxonomy variant
            rules: Fallback classifier (a fresh RuleClassifier by default)
            http_client: Shared async client; one is created (and owned) if omitted
        """
        self.config = config
        self.taxonomy = taxonomy
        self._rules = rules or RuleClassifier()
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=config.timeout_seconds)

    async def aclose(self) -> None:
        """Close the HTTP client if this classifier created it."""
        if self._owns_client:
            await self._http.aclose()

    async def classify(
        self,
        subject: str,
        sanitized_text: str,
        credential: str | None,
        original_text: str | None = None,
    ) -> ClassificationResult:
        """Classify an email, with at most one outbound model call.

        Args:
            subject: Email subject
            sanitized_text: Output of the Sanitizer
            credential: Bearer token for the model service (None = rules only)
            original_text: Unsanitized body, for the verbatim-copy check

        Returns:
            ClassificationResult; never raises for model or network problems
        """
        if not credential or not sanitized_text.strip():
            return self._rules.classify(subject, sanitized_text)

        try:
            parsed = await asyncio.wait_for(
                self._call_model(subject, sanitized_text, credential),
                timeout=self.config.timeout_seconds,
            )
            summary = self._extract_summary(parsed)
        except TimeoutError:
            logger.warning("ai_call_timeout", timeout_seconds=self.config.timeout_seconds)
            return self._fallback(subject, sanitized_text)
        except TransportError as e:
            logger.warning("ai_call_failed", error=str(e), status_code=e.status_code)
            return self._fallback(subject, sanitized_text)

        tag = parse_tag(parsed.get("tag"))
        if tag is None:
            logger.info("ai_tag_invalid", tag=str(parsed.get("tag"))[:40])
            tag = DEFAULT_TAGS[self.taxonomy]

        method = METHOD_AI
        try:
            check_contract(summary, sanitized_text, original_text)
        except ContractViolation as e:
            logger.info("ai_summary_repaired", reason=e.reason)
            summary = emergency_summary(sanitized_text)
            method = METHOD_AI_REPAIRED

        if method == METHOD_AI and self.config.context_hints:
            hint = context_hint(subject, sanitized_text)
            if hint:
                summary = hint

        logger.debug("ai_classification_complete", tag=tag.value, method=method)
        return ClassificationResult(summary=summary, tag=tag, method=method)

    def _fallback(self, subject: str, sanitized_text: str) -> ClassificationResult:
        result = self._rules.classify(subject, sanitized_text)
        return dataclasses.replace(result, method=METHOD_AI_FALLBACK)

    @staticmethod
    def _extract_summary(parsed: dict[str, Any]) -> str:
        summary = parsed.get("summary")
        if not isinstance(summary, str):
            raise TransportError("Model response has no string 'summary' field")
        summary = " ".join(summary.split())
        if len(summary) < MIN_MODEL_SUMMARY_CHARS:
            raise TransportError(f"Model summary too short to use: {summary!r}")
        return summary

    async def _call_model(self, subject: str, sanitized_text: str, credential: str) -> dict[str, Any]:
        """POST one chat-completion request and return the parsed JSON object.

        Raises:
            TransportError: For network errors, non-2xx statuses and malformed
                envelopes or content
        """
        payload = {
            "model": self.config.model,
            "messages": build_messages(subject, sanitized_text, self.taxonomy),
            "max_tokens": self.config.max_tokens,
            "temperature": self.config.temperature,
            "response_format": {"type": "json_object"},
        }
        headers = {
            "Authorization": f"Bearer {credential}",
            "Content-Type": "application/json",
        }

        try:
            response = await self._http.post(self.config.endpoint, headers=headers, json=payload)
        except httpx.TimeoutException as e:
            raise TransportError(f"Model request timed out: {e}") from e
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise TransportError(f"Model request failed: {e}") from e

        if response.status_code in (401, 403):
            logger.warning("ai_credential_rejected", status_code=response.status_code)
            raise TransportError(
                f"Model service rejected the API key ({response.status_code}). "
                "Update it with 'python -m notifier settings --ai-api-key'.",
                status_code=response.status_code,
            )
        if not response.is_success:
            raise TransportError(
                f"Model service returned HTTP {response.status_code}",
                status_code=response.status_code,
            )

        try:
            data = response.json()
            content = data["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise TransportError(f"Malformed model response envelope: {e}") from e
        if not isinstance(content, str):
            raise TransportError("Model response content is not a string")

        usage = data.get("usage") if isinstance(data, dict) else None
        logger.debug(
            "ai_call_success",
            model=self.config.model,
            tokens_used=usage.get("total_tokens") if isinstance(usage, dict) else None,
        )
        return parse_model_content(content)
