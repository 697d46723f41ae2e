"""Poll engine: one notification cycle over unread Gmail messages.

Each cycle:
1. Skip immediately if a previous cycle is still running
2. Reload processed ids and user settings (AI credential) from the state
   store
3. List unread message ids, drop ones already processed
4. Fetch the remaining messages concurrently
5. Process messages concurrently: extract -> sanitize -> classify -> notify
   -> mark processed
6. Record the last-check timestamp

Faults are scoped: a broken message is counted as failed without touching
its siblings, a rejected Gmail token is invalidated and the fetch retried
once, and anything still failing is recorded on the cycle result and
retried next cycle.

Usage:
    from notifier.engine.poller import PollEngine

    engine = PollEngine(
        client=gmail_client,
        token_provider=token_provider,
        store=store,
        dedup=tracker,
        ai_classifier=classifier,
        notifier=ConsoleNotifier(),
        config=app_config,
    )
    result = await engine.run_cycle()
"""

from __future__ import annotations

import asyncio
import time
import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from notifier.classifier.sanitizer import Sanitizer
from notifier.classifier.types import METHOD_AI, METHOD_AI_REPAIRED
from notifier.core.errors import AuthenticationError, DatabaseError, MailSourceError
from notifier.core.logging import get_logger, set_correlation_id
from notifier.engine.notification import build_notification
from notifier.mail.extractor import ContentExtractor

if TYPE_CHECKING:
    from notifier.classifier.ai_classifier import AIClassifier
    from notifier.config_schema import AppConfig, UserSettings
    from notifier.db.store import StateStore
    from notifier.engine.dedup import DedupTracker
    from notifier.engine.notification import Notifier
    from notifier.mail.client import GmailClient, TokenProvider

logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Result dataclasses
# ---------------------------------------------------------------------------


@dataclass
class PollCycleResult:
    """Result of a single poll cycle."""

    cycle_id: str
    duration_ms: int = 0
    fetched: int = 0
    processed: int = 0
    skipped: int = 0
    failed: int = 0
    ai_classified: int = 0
    rule_classified: int = 0
    notified: int = 0
    skipped_reentrant: bool = False
    error: str | None = None


@dataclass
class _ProcessResult:
    """Internal result of processing a single message."""

    method: str  # classification method, or 'failed'
    notified: bool = False


class PollEngine:
    """Runs notification cycles over the Gmail inbox.

    Each cycle generates a UUID4 poll_cycle_id for log correlation.

    Attributes:
        _client: GmailClient message source
        _token_provider: Token provider, invalidated on 401
        _store: StateStore for settings and last-check bookkeeping
        _dedup: DedupTracker gating already-processed ids
        _ai: AIClassifier (falls back to rules internally)
        _notifier: Notification sink
        _config: Application configuration
    """

    def __init__(
        self,
        client: GmailClient,
        token_provider: TokenProvider,
        store: StateStore,
        dedup: DedupTracker,
        ai_classifier: AIClassifier,
        notifier: Notifier,
        config: AppConfig,
        extractor: ContentExtractor | None = None,
        sanitizer: Sanitizer | None = None,
    ):
        self._client = client
        self._token_provider = token_provider
        self._store = store
        self._dedup = dedup
        self._ai = ai_classifier
        self._notifier = notifier
        self._config = config
        self._extractor = extractor or ContentExtractor()
        self._sanitizer = sanitizer or Sanitizer()
        self._in_flight = False

    @property
    def in_flight(self) -> bool:
        """Whether a cycle is currently running."""
        return self._in_flight

    def update_config(self, config: AppConfig) -> None:
        """Update the config reference for hot-reload support."""
        self._config = config
        self._ai.config = config.ai
        self._ai.taxonomy = config.classification.taxonomy

    async def run_cycle(self) -> PollCycleResult:
        """Execute a single poll cycle.

        Returns:
            PollCycleResult with counts and timing; a cycle that started
            while another was running has skipped_reentrant=True
        """
        cycle_id = str(uuid.uuid4())

        if self._in_flight:
            logger.info("poll_cycle_skipped_reentrant", skipped_cycle_id=cycle_id)
            return PollCycleResult(cycle_id=cycle_id, skipped_reentrant=True)

        self._in_flight = True
        set_correlation_id(cycle_id)
        start_time = time.monotonic()
        result = PollCycleResult(cycle_id=cycle_id)

        logger.info("poll_cycle_start", batch_size=self._config.gmail.batch_size)

        try:
            # Picks up a clear-processed run from another process.
            await self._dedup.load()
            settings = await self._store.get_settings()

            try:
                messages = await self._fetch_unprocessed(result)
            except AuthenticationError as e:
                logger.warning("gmail_auth_rejected_retrying", error=str(e))
                self._token_provider.invalidate()
                messages = await self._fetch_unprocessed(result)

            if not messages:
                logger.info("poll_cycle_no_new_messages")
            else:
                outcomes = await asyncio.gather(
                    *(self._process_message(message, settings) for message in messages),
                    return_exceptions=True,
                )
                for outcome in outcomes:
                    self._tally(result, outcome)

            await self._store.set_last_check()

        except (AuthenticationError, MailSourceError, DatabaseError) as e:
            result.error = str(e)
            logger.error("poll_cycle_error", error=str(e), error_type=type(e).__name__)
        finally:
            result.duration_ms = int((time.monotonic() - start_time) * 1000)

            logger.info(
                "poll_cycle_complete",
                duration_ms=result.duration_ms,
                fetched=result.fetched,
                processed=result.processed,
                skipped=result.skipped,
                failed=result.failed,
                ai_classified=result.ai_classified,
                rule_classified=result.rule_classified,
                notified=result.notified,
            )

            set_correlation_id(None)
            self._in_flight = False

        return result

    async def _fetch_unprocessed(self, result: PollCycleResult) -> list[dict[str, Any]]:
        """List unread ids and fetch the ones not yet processed.

        Per-message fetch failures are counted on the result; an
        authentication failure anywhere aborts the fetch.

        Raises:
            AuthenticationError: If Gmail rejects the token
            MailSourceError: If the id listing fails
        """
        gmail = self._config.gmail
        ids = await asyncio.to_thread(
            self._client.list_unread_ids, max_results=gmail.batch_size, query=gmail.query
        )
        result.fetched = len(ids)

        new_ids = [message_id for message_id in ids if not self._dedup.has(message_id)]
        result.skipped = len(ids) - len(new_ids)
        if not new_ids:
            return []

        fetched = await asyncio.gather(
            *(asyncio.to_thread(self._client.get_message, message_id) for message_id in new_ids),
            return_exceptions=True,
        )

        messages: list[dict[str, Any]] = []
        fetch_failures = 0
        for message_id, item in zip(new_ids, fetched, strict=True):
            if isinstance(item, AuthenticationError):
                raise item
            if isinstance(item, BaseException):
                logger.error(
                    "message_fetch_failed",
                    message_id=message_id,
                    error=str(item),
                    error_type=type(item).__name__,
                )
                fetch_failures += 1
                continue
            messages.append(item)

        result.failed = fetch_failures
        return messages

    async def _process_message(self, raw: dict[str, Any], settings: UserSettings) -> _ProcessResult:
        """Run one message through the pipeline and mark it processed.

        The id is marked only after classification finished and a
        notification was attempted.
        """
        email = self._extractor.extract_email(raw)
        if not email.id:
            logger.warning("message_without_id")
            return _ProcessResult(method="failed")

        body = email.body or email.snippet
        sanitized = self._sanitizer.sanitize(body)
        classification = await self._ai.classify(
            email.subject,
            sanitized,
            credential=settings.ai_api_key,
            original_text=body,
        )

        notification = build_notification(
            email, classification, self._config.classification.taxonomy
        )
        notified = True
        try:
            await self._notifier.notify(notification)
        except Exception as e:  # notifier is an external collaborator
            notified = False
            logger.error(
                "notification_failed",
                message_id=email.id,
                error=str(e),
                error_type=type(e).__name__,
            )

        try:
            await self._dedup.mark_processed(email.id)
        except DatabaseError as e:
            logger.error("mark_processed_failed", message_id=email.id, error=str(e))

        logger.info(
            "message_processed",
            message_id=email.id,
            tag=classification.tag.value,
            method=classification.method,
            notified=notified,
        )
        return _ProcessResult(method=classification.method, notified=notified)

    @staticmethod
    def _tally(result: PollCycleResult, outcome: _ProcessResult | BaseException) -> None:
        if isinstance(outcome, BaseException):
            logger.error(
                "message_processing_failed",
                error=str(outcome),
                error_type=type(outcome).__name__,
            )
            result.failed += 1
            return

        if outcome.method == "failed":
            result.failed += 1
            return

        result.processed += 1
        if outcome.method in (METHOD_AI, METHOD_AI_REPAIRED):
            result.ai_classified += 1
        else:
            result.rule_classified += 1
        if outcome.notified:
            result.notified += 1
