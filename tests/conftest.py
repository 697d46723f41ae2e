"""Pytest fixtures and configuration for Gmail notifier tests.

Provides common fixtures for configuration, the state store, and mocking.
"""

import os
from pathlib import Path
from typing import Any, Generator

import pytest

from notifier.config import reset_config
from notifier.config_schema import AppConfig
from notifier.db.store import StateStore


@pytest.fixture(autouse=True)
def reset_config_singleton() -> Generator[None, None, None]:
    """Reset the config singleton before each test."""
    reset_config()
    yield
    reset_config()


@pytest.fixture
def temp_config_dir(tmp_path: Path) -> Path:
    """Create a temporary config directory."""
    config_dir = tmp_path / "config"
    config_dir.mkdir()
    return config_dir


@pytest.fixture
def sample_config_yaml() -> str:
    """Return a minimal valid config.yaml content."""
    return """
schema_version: 1

gmail:
  batch_size: 10
  token_env: "TEST_GMAIL_TOKEN"

ai:
  model: "gpt-3.5-turbo"
  timeout_seconds: 5

classification:
  taxonomy: "action"

storage:
  db_path: "data/notifier.db"
"""


@pytest.fixture
def sample_config_dict() -> dict[str, Any]:
    """Return a minimal valid config as a dictionary."""
    return {
        "schema_version": 1,
        "gmail": {"batch_size": 10, "token_env": "TEST_GMAIL_TOKEN"},
        "ai": {"model": "gpt-3.5-turbo", "timeout_seconds": 5},
        "classification": {"taxonomy": "action"},
        "storage": {"db_path": "data/notifier.db"},
    }


@pytest.fixture
def sample_config(sample_config_dict: dict[str, Any]) -> AppConfig:
    """Return a minimal valid AppConfig instance."""
    return AppConfig(**sample_config_dict)


@pytest.fixture
def config_file(temp_config_dir: Path, sample_config_yaml: str) -> Path:
    """Create a temporary config file with valid content."""
    config_path = temp_config_dir / "config.yaml"
    config_path.write_text(sample_config_yaml)
    return config_path


@pytest.fixture
def set_config_env(config_file: Path) -> Generator[None, None, None]:
    """Set the NOTIFIER_CONFIG_PATH environment variable."""
    old_value = os.environ.get("NOTIFIER_CONFIG_PATH")
    os.environ["NOTIFIER_CONFIG_PATH"] = str(config_file)
    yield
    if old_value is None:
        del os.environ["NOTIFIER_CONFIG_PATH"]
    else:
        os.environ["NOTIFIER_CONFIG_PATH"] = old_value


@pytest.fixture
def data_dir(tmp_path: Path) -> Path:
    """Create a temporary data directory."""
    data = tmp_path / "data"
    data.mkdir()
    return data


@pytest.fixture
def db_path(data_dir: Path) -> Path:
    """Path for a test state database."""
    return data_dir / "test.db"


@pytest.fixture
async def store(db_path: Path) -> StateStore:
    """Create and initialize a StateStore."""
    store = StateStore(db_path)
    await store.initialize()
    return store
