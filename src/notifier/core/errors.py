"""Custom exception types for the mail notifier.

Error messages follow one convention:
- What failed (specific operation or component)
- Why it failed (the specific condition)
- How to fix it (actionable guidance, where there is any)

Most pipeline faults are non-fatal and scoped to a single message or call.
Only configuration errors are expected to stop the process.
"""


class NotifierError(Exception):
    """Base exception for all mail notifier errors."""

    pass


class ConfigValidationError(NotifierError):
    """Raised when config.yaml fails Pydantic validation.

    Includes specific field errors with actionable messages.
    """

    pass


class ConfigLoadError(NotifierError):
    """Raised when config.yaml cannot be loaded (file not found, YAML parse error)."""

    pass


class AuthenticationError(NotifierError):
    """Raised when the mail source rejects the bearer credential (401).

    The poll engine invalidates the cached token and retries the batch once.
    """

    pass


class MailSourceError(NotifierError):
    """Raised when the Gmail API returns an error or cannot be reached.

    Attributes:
        status_code: HTTP status code from the API (None for network errors)
    """

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class ExtractionError(NotifierError):
    """Raised when a message payload is malformed or has no body.

    Non-fatal: the extractor logs it and yields an empty body.

    Attributes:
        message_id: Gmail message ID being extracted
    """

    def __init__(self, message: str, message_id: str | None = None):
        super().__init__(message)
        self.message_id = message_id


class DecodeError(ExtractionError):
    """Raised when a body part cannot be base64/UTF-8 decoded.

    Non-fatal: the part is treated as empty content.
    """

    pass


class TransportError(NotifierError):
    """Raised when the language-model call fails at the transport level.

    Covers network errors, timeouts, non-success HTTP statuses and
    unparseable envelopes. Always triggers the rule-based fallback.

    Attributes:
        status_code: HTTP status code (None for network errors and timeouts)
    """

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class ContractViolation(NotifierError):
    """Raised when model output breaks the summary/tag output contract.

    Triggers emergency-summary repair rather than a full fallback.

    Attributes:
        reason: Short machine-readable reason ('too_long', 'forbidden_content',
            'verbatim_copy')
    """

    def __init__(self, message: str, reason: str):
        super().__init__(message)
        self.reason = reason


class DatabaseError(NotifierError):
    """Raised when SQLite state operations fail."""

    pass
