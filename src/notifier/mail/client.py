"""Gmail REST API client with retry logic and error handling.

This module provides the message source for the poll engine:
- Listing unread message IDs (`GET /users/me/messages`)
- Fetching full message resources (`GET /users/me/messages/{id}?format=full`)
- Automatic retry with jittered exponential backoff for 5xx and 429
- Bearer tokens from a pluggable TokenProvider

The client is synchronous (requests); the poll engine runs calls in worker
threads with asyncio.to_thread, so each thread gets its own requests.Session.

Usage:
    from notifier.mail.client import EnvTokenProvider, GmailClient

    client = GmailClient(EnvTokenProvider("GMAIL_ACCESS_TOKEN"))
    for message_id in client.list_unread_ids(max_results=10):
        message = client.get_message(message_id)
"""

import os
import random
import threading
import time
from collections.abc import Callable
from typing import Any, Protocol

import requests

from notifier.core.errors import AuthenticationError, MailSourceError
from notifier.core.logging import get_logger

logger = get_logger(__name__)

GMAIL_BASE_URL = "https://gmail.googleapis.com/gmail/v1"

# Default retry configuration
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_DELAYS = [1.0, 2.0, 4.0]  # Exponential backoff delays in seconds


class TokenProvider(Protocol):
    """Supplies bearer credentials for the mail source."""

    def get_token(self) -> str:
        """Return a current access token or raise AuthenticationError."""
        ...

    def invalidate(self) -> None:
        """Drop any cached token so the next get_token() fetches a fresh one."""
        ...


class EnvTokenProvider:
    """Token provider reading the access token from an environment variable.

    The OAuth flow that mints the token lives outside this process (e.g. a
    helper that refreshes the variable or the .env file). The token is
    cached until invalidated, then re-read from the environment.
    """

    def __init__(self, env_var: str = "GMAIL_ACCESS_TOKEN"):
        self.env_var = env_var
        self._token: str | None = None
        self._lock = threading.Lock()

    def get_token(self) -> str:
        with self._lock:
            if self._token is None:
                token = os.environ.get(self.env_var, "").strip()
                if not token:
                    raise AuthenticationError(
                        f"No Gmail access token found in ${self.env_var}. "
                        "Set it in the environment or in .env and restart."
                    )
                self._token = token
            return self._token

    def invalidate(self) -> None:
        with self._lock:
            self._token = None
        logger.info("gmail_token_invalidated", env_var=self.env_var)


class GmailClient:
    """Gmail API client with retry logic and error handling.

    Attributes:
        token_provider: Source of bearer tokens
        base_url: Gmail API base URL
        max_retries: Maximum number of retry attempts
        retry_delays: List of delay times (seconds) for each retry
        timeout: Per-request timeout in seconds

    Sessions are created lazily, one per calling thread, since
    requests.Session is not thread-safe.
    """

    def __init__(
        self,
        token_provider: TokenProvider,
        base_url: str = GMAIL_BASE_URL,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delays: list[float] | None = None,
        timeout: float = 30.0,
        session_factory: Callable[[], requests.Session] = requests.Session,
    ):
        self.token_provider = token_provider
        self.base_url = base_url.rstrip("/")
        self.max_retries = max_retries
        self.retry_delays = retry_delays or DEFAULT_RETRY_DELAYS
        self.timeout = timeout

        self._session_factory = session_factory
        self._local = threading.local()
        self._sessions: list[requests.Session] = []
        self._sessions_lock = threading.Lock()

        logger.debug(
            "GmailClient initialized",
            base_url=self.base_url,
            max_retries=self.max_retries,
        )

    @property
    def session(self) -> requests.Session:
        """The calling thread's session, created on first use."""
        session = getattr(self._local, "session", None)
        if session is None:
            session = self._session_factory()
            self._local.session = session
            with self._sessions_lock:
                self._sessions.append(session)
        return session

    # =========================================================================
    # Message operations
    # =========================================================================

    def list_unread_ids(self, max_results: int = 10, query: str = "is:unread") -> list[str]:
        """List IDs of messages matching the query, newest first.

        Args:
            max_results: Maximum number of IDs to return
            query: Gmail search query

        Returns:
            Message IDs (empty list when nothing matches)
        """
        data = self.get(
            "/users/me/messages",
            params={"q": query, "maxResults": max_results},
        )
        messages = data.get("messages") or []
        return [str(m["id"]) for m in messages if isinstance(m, dict) and m.get("id")]

    def get_message(self, message_id: str) -> dict[str, Any]:
        """Fetch the full message resource (headers, snippet, MIME payload)."""
        return self.get(f"/users/me/messages/{message_id}", params={"format": "full"})

    # =========================================================================
    # HTTP plumbing
    # =========================================================================

    def _get_headers(self) -> dict[str, str]:
        """Get request headers with the current access token.

        Raises:
            AuthenticationError: If no token can be obtained
        """
        token = self.token_provider.get_token()
        return {
            "Authorization": f"Bearer {token}",
            "Accept": "application/json",
        }

    def _make_url(self, endpoint: str) -> str:
        if not endpoint.startswith("/"):
            endpoint = "/" + endpoint
        return self.base_url + endpoint

    def _handle_error_response(self, response: requests.Response, endpoint: str) -> None:
        """Raise the exception matching an error response.

        Raises:
            AuthenticationError: For 401
            MailSourceError: For every other error status
        """
        try:
            error_info = response.json().get("error", {})
            error_message = error_info.get("message", response.text)
        except (ValueError, AttributeError):
            error_message = response.text or f"HTTP {response.status_code}"

        logger.error(
            "Gmail API error",
            endpoint=endpoint,
            status_code=response.status_code,
            error_message=str(error_message)[:200],
        )

        if response.status_code == 401:
            raise AuthenticationError(
                f"Gmail rejected the access token (401): {error_message}. "
                "The token may have expired; refresh it and retry."
            )
        if response.status_code == 403:
            raise MailSourceError(
                f"Permission denied (403): {error_message}. "
                "Check that the token has the gmail.readonly scope.",
                status_code=403,
            )
        if response.status_code == 429:
            retry_after = response.headers.get("Retry-After", "unknown")
            raise MailSourceError(
                f"Rate limit exceeded (429). Retry after: {retry_after} seconds.",
                status_code=429,
            )
        raise MailSourceError(
            f"Gmail API error ({response.status_code}): {error_message}",
            status_code=response.status_code,
        )

    def _should_retry(self, response: requests.Response, attempt: int) -> bool:
        if attempt >= self.max_retries:
            return False
        return response.status_code == 429 or 500 <= response.status_code < 600

    def _get_retry_delay(self, response: requests.Response | None, attempt: int) -> float:
        """Get the delay before retrying, with ±20% jitter.

        A 429 Retry-After header overrides the backoff schedule.
        """
        base_delay = self.retry_delays[min(attempt, len(self.retry_delays) - 1)]
        if response is not None and response.status_code == 429:
            retry_after = response.headers.get("Retry-After")
            if retry_after:
                try:
                    base_delay = float(retry_after)
                except ValueError:
                    pass  # Fall through to default

        jitter = base_delay * 0.2 * (2 * random.random() - 1)
        return base_delay + jitter

    def get(self, endpoint: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        """Make a GET request to the Gmail API with retry logic.

        Returns:
            Parsed JSON response as a dictionary

        Raises:
            AuthenticationError: When the token is missing or rejected
            MailSourceError: For other API and network errors
        """
        url = self._make_url(endpoint)
        last_response = None

        for attempt in range(self.max_retries + 1):
            headers = self._get_headers()
            logger.debug("Gmail API request", endpoint=endpoint, attempt=attempt + 1)

            try:
                response = self.session.get(
                    url, headers=headers, params=params, timeout=self.timeout
                )
            except (requests.exceptions.Timeout, requests.exceptions.ConnectionError) as e:
                if attempt < self.max_retries:
                    delay = self._get_retry_delay(None, attempt)
                    logger.warning(
                        "Gmail API network error, retrying",
                        endpoint=endpoint,
                        attempt=attempt + 1,
                        error=str(e),
                        delay=delay,
                    )
                    time.sleep(delay)
                    continue
                raise MailSourceError(
                    f"Request to {endpoint} failed after {self.max_retries} retries: {e}. "
                    "Check your internet connection and try again."
                ) from e

            last_response = response
            if response.status_code < 400:
                try:
                    return response.json()
                except ValueError as e:
                    raise MailSourceError(
                        f"Gmail returned a non-JSON response for {endpoint}",
                        status_code=response.status_code,
                    ) from e

            if self._should_retry(response, attempt):
                delay = self._get_retry_delay(response, attempt)
                logger.warning(
                    "Retrying Gmail API request",
                    endpoint=endpoint,
                    status_code=response.status_code,
                    attempt=attempt + 1,
                    max_retries=self.max_retries,
                    delay=delay,
                )
                time.sleep(delay)
                continue

            self._handle_error_response(response, endpoint)

        # All retries exhausted
        if last_response is not None:
            self._handle_error_response(last_response, endpoint)
        raise MailSourceError(f"Request to {endpoint} failed after {self.max_retries} retries")

    def close(self) -> None:
        """Close every session opened by this client."""
        with self._sessions_lock:
            sessions, self._sessions = self._sessions, []
        for session in sessions:
            session.close()
        self._local = threading.local()
