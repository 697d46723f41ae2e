"""Configuration loader with hot-reload support.

Loads config.yaml, validates it against the Pydantic schema and caches it as
a process-wide singleton. The poll loop calls reload_config_if_changed()
before each cycle so edits are picked up without a restart.

Usage:
    from notifier.config import get_config, reload_config_if_changed

    config = get_config()

    if reload_config_if_changed():
        config = get_config()
"""

import os
import threading
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from notifier.config_schema import CURRENT_SCHEMA_VERSION, AppConfig
from notifier.core.errors import ConfigLoadError, ConfigValidationError
from notifier.core.logging import get_logger

logger = get_logger(__name__)

# Default config path - can be overridden via environment variable
DEFAULT_CONFIG_PATH = Path("config/config.yaml")

_config_lock = threading.Lock()
_current_config: AppConfig | None = None
_config_path: Path | None = None
_config_mtime: float = 0.0


def _get_config_path() -> Path:
    """Get the config file path from environment or default."""
    env_path = os.environ.get("NOTIFIER_CONFIG_PATH")
    if env_path:
        return Path(env_path)
    return DEFAULT_CONFIG_PATH


def _format_validation_errors(error: ValidationError) -> str:
    """Format Pydantic validation errors into actionable messages.

    Args:
        error: Pydantic ValidationError

    Returns:
        Formatted error message with one line per field error
    """
    messages = []
    for err in error.errors():
        field_path = ".".join(str(loc) for loc in err["loc"])
        err_type = err["type"]

        if err_type == "missing":
            messages.append(f"  - Missing required field '{field_path}'")
        elif err_type == "string_type":
            messages.append(f"  - Field '{field_path}' must be a string")
        elif err_type in ("int_type", "int_parsing"):
            messages.append(f"  - Field '{field_path}' must be an integer")
        else:
            messages.append(f"  - Field '{field_path}': {err['msg']}")

    return "\n".join(messages)


def _load_yaml(path: Path) -> dict[str, Any]:
    """Load and parse a YAML mapping.

    Raises:
        ConfigLoadError: If file not found, not a mapping, or not valid YAML
    """
    if not path.exists():
        raise ConfigLoadError(
            f"Configuration file not found: {path}\n"
            f"Create it by copying config/config.yaml.example to {path}"
        )

    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigLoadError(f"Failed to parse YAML in {path}:\n{e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigLoadError(
            f"Configuration file must be a YAML mapping, got {type(data).__name__}"
        )
    return data


def _validate_config(data: dict[str, Any], path: Path) -> AppConfig:
    """Validate config data against the Pydantic schema.

    Raises:
        ConfigValidationError: If validation fails or the schema is too new
    """
    try:
        config = AppConfig(**data)
    except ValidationError as e:
        error_details = _format_validation_errors(e)
        raise ConfigValidationError(
            f"Configuration validation failed for {path}:\n{error_details}"
        ) from e

    if config.schema_version > CURRENT_SCHEMA_VERSION:
        raise ConfigValidationError(
            f"Config schema version {config.schema_version} is newer than "
            f"supported version {CURRENT_SCHEMA_VERSION}. "
            "Please upgrade the notifier or downgrade the config."
        )

    return config


def load_config(path: Path | None = None) -> AppConfig:
    """Load and validate configuration from YAML, always reading from disk.

    Args:
        path: Optional path to config file. Defaults to NOTIFIER_CONFIG_PATH
              or config/config.yaml.

    Raises:
        ConfigLoadError: If file cannot be loaded
        ConfigValidationError: If validation fails
    """
    config_path = path or _get_config_path()

    logger.debug("Loading configuration", path=str(config_path))

    data = _load_yaml(config_path)
    config = _validate_config(data, config_path)

    logger.info(
        "Configuration loaded successfully",
        path=str(config_path),
        schema_version=config.schema_version,
        taxonomy=config.classification.taxonomy,
        batch_size=config.gmail.batch_size,
    )

    return config


def get_config() -> AppConfig:
    """Get the current configuration singleton, loading it on first call.

    Thread-safe: the APScheduler job and the CLI thread may both call it.

    Raises:
        ConfigLoadError: If file cannot be loaded
        ConfigValidationError: If validation fails
    """
    global _current_config, _config_path, _config_mtime

    with _config_lock:
        if _current_config is None:
            _config_path = _get_config_path()
            _current_config = load_config(_config_path)
            _config_mtime = _config_path.stat().st_mtime

        return _current_config


def reload_config_if_changed() -> bool:
    """Reload the config if the file's mtime moved forward.

    Returns:
        True if config was reloaded, False if unchanged or the new file is
        invalid (the previous config is kept and a warning logged)
    """
    global _current_config, _config_mtime

    with _config_lock:
        if _config_path is None:
            return False

        try:
            current_mtime = _config_path.stat().st_mtime
        except OSError as e:
            logger.warning(
                "Failed to check config file mtime",
                path=str(_config_path),
                error=str(e),
            )
            return False

        if current_mtime <= _config_mtime:
            return False

        logger.info("Configuration file changed, attempting reload", path=str(_config_path))

        try:
            new_config = load_config(_config_path)
        except (ConfigLoadError, ConfigValidationError) as e:
            logger.warning(
                "Configuration reload failed, keeping previous config",
                path=str(_config_path),
                error=str(e),
            )
            # Don't retry the same broken file every cycle
            _config_mtime = current_mtime
            return False

        _current_config = new_config
        _config_mtime = current_mtime
        return True


def validate_config_file(path: Path | None = None) -> tuple[bool, str]:
    """Validate a config file without loading it into the singleton.

    Returns:
        Tuple of (is_valid, message)
    """
    config_path = path or _get_config_path()

    try:
        config = load_config(config_path)
    except ConfigLoadError as e:
        return (False, f"Load error: {e}")
    except ConfigValidationError as e:
        return (False, f"Validation error: {e}")

    return (
        True,
        f"Configuration valid (schema version {config.schema_version})\n"
        f"  - model: {config.ai.model}\n"
        f"  - taxonomy: {config.classification.taxonomy}\n"
        f"  - batch size: {config.gmail.batch_size}\n"
        f"  - state db: {config.storage.db_path}",
    )


def reset_config() -> None:
    """Reset the config singleton. Primarily for testing."""
    global _current_config, _config_path, _config_mtime
    with _config_lock:
        _current_config = None
        _config_path = None
        _config_mtime = 0.0
