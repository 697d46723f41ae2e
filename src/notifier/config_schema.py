"""Pydantic configuration schema for the mail notifier.

This module defines the schema that mirrors config.yaml, plus the
UserSettings blob persisted in the state store (AI credential and polling
interval). Config is validated on startup and hot-reload; settings are
sanitized rather than rejected.

Usage:
    from notifier.config_schema import AppConfig

    config = AppConfig(**yaml_data)
"""

from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

# Current schema version - increment when adding new required fields
CURRENT_SCHEMA_VERSION = 1

# Polling interval bounds for the persisted settings blob (seconds)
MIN_POLLING_INTERVAL_SECONDS = 30
MAX_POLLING_INTERVAL_SECONDS = 3600
DEFAULT_POLLING_INTERVAL_SECONDS = 30


class GmailConfig(BaseModel):
    """Gmail REST API message source configuration."""

    base_url: str = Field(
        default="https://gmail.googleapis.com/gmail/v1",
        description="Gmail REST API base URL",
    )
    query: str = Field(
        default="is:unread",
        description="Search query used to list candidate messages",
    )
    batch_size: int = Field(
        default=10,
        ge=1,
        le=50,
        description="Max messages fetched and processed per poll cycle",
    )
    token_env: str = Field(
        default="GMAIL_ACCESS_TOKEN",
        description="Environment variable holding the OAuth bearer token",
    )
    request_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        le=120,
        description="Per-request timeout for Gmail API calls",
    )

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        """Ensure the base URL is an http(s) URL."""
        if not v.startswith(("https://", "http://")):
            raise ValueError("base_url must start with http:// or https://")
        return v.rstrip("/")


class AIConfig(BaseModel):
    """Chat-completion model configuration for AI classification."""

    endpoint: str = Field(
        default="https://api.openai.com/v1/chat/completions",
        description="Chat-completion endpoint URL",
    )
    model: str = Field(
        default="gpt-3.5-turbo",
        description="Model used for summary + tag classification",
    )
    max_tokens: int = Field(
        default=120,
        ge=16,
        le=1024,
        description="Completion token budget",
    )
    temperature: float = Field(
        default=0.4,
        ge=0.0,
        le=2.0,
        description="Sampling temperature",
    )
    timeout_seconds: float = Field(
        default=15.0,
        gt=0,
        le=120,
        description="Hard timeout for one model call; expiry falls back to rules",
    )
    context_hints: bool = Field(
        default=True,
        description="Replace accepted AI summaries with fixed category hints "
        "(OTP, sign-in, interview, invoice, ...)",
    )


class ClassificationConfig(BaseModel):
    """Tag taxonomy configuration."""

    taxonomy: Literal["action", "reply"] = Field(
        default="action",
        description="'action': Action Required / No Action Needed labels, invalid "
        "AI tags default to No Action Needed. 'reply': Reply Required / No Reply "
        "Needed labels, invalid AI tags default to FYI.",
    )


class StorageConfig(BaseModel):
    """State store configuration."""

    db_path: str = Field(
        default="data/notifier.db",
        description="Path to the SQLite state database",
    )

    @field_validator("db_path")
    @classmethod
    def validate_db_path(cls, v: str) -> str:
        """Ensure db path doesn't contain path traversal."""
        if not v or not v.strip():
            raise ValueError("Database path cannot be empty")
        if ".." in v:
            raise ValueError("Database path cannot contain '..' (path traversal)")
        return v


class AppConfig(BaseModel):
    """Root configuration schema for the mail notifier.

    If validation fails on startup, the application exits with a clear error.
    If validation fails on hot-reload, the previous valid config is kept.
    """

    schema_version: int = Field(
        default=CURRENT_SCHEMA_VERSION,
        ge=1,
        description="Config schema version for migration tracking",
    )
    gmail: GmailConfig = Field(default_factory=GmailConfig)
    ai: AIConfig = Field(default_factory=AIConfig)
    classification: ClassificationConfig = Field(default_factory=ClassificationConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)


class UserSettings(BaseModel):
    """User-editable settings persisted under the 'settings' state key.

    The presence of ai_api_key switches the classifier from rule-only mode
    to AI mode. Out-of-range polling intervals are clamped, never rejected,
    so a bad stored value can't stop the poller from starting.
    """

    ai_api_key: str | None = Field(
        default=None,
        description="Bearer credential for the chat-completion service",
    )
    polling_interval_seconds: int = Field(
        default=DEFAULT_POLLING_INTERVAL_SECONDS,
        description="Seconds between poll cycles",
    )

    @field_validator("ai_api_key", mode="before")
    @classmethod
    def normalize_api_key(cls, v: Any) -> str | None:
        """Treat blank or non-string keys as absent."""
        if not isinstance(v, str):
            return None
        v = v.strip()
        return v or None

    @field_validator("polling_interval_seconds", mode="before")
    @classmethod
    def sanitize_interval(cls, v: Any) -> int:
        """Clamp the interval into the supported range."""
        try:
            seconds = int(v)
        except (TypeError, ValueError):
            return DEFAULT_POLLING_INTERVAL_SECONDS
        if seconds < MIN_POLLING_INTERVAL_SECONDS:
            return MIN_POLLING_INTERVAL_SECONDS
        return min(seconds, MAX_POLLING_INTERVAL_SECONDS)

    @property
    def ai_enabled(self) -> bool:
        """Whether an AI credential is configured."""
        return self.ai_api_key is not None
