"""
Tests for configuration management in `healthjournal/config.py`.

Covers:
- Environment parsing and debug defaults
- Logging level coercion to the expected Literal
- Journal policy parsing (sorting, rename collisions, seed catalog)
- Storage backend selection and URL validation
- get_config cache behavior
- AppConfig validation (debug only in development, no memory backend in production)
"""

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest

from healthjournal.config import (
    AppConfig,
    JournalConfig,
    LoggingConfig,
    StorageConfig,
    get_config,
    load_config_from_env,
)


@pytest.fixture(autouse=True)
def clear_config_cache() -> Iterator[None]:
    """Ensure get_config cache is cleared before and after each test."""
    get_config.cache_clear()
    yield
    get_config.cache_clear()


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "ENVIRONMENT",
        "LOG_LEVEL",
        "STORAGE_BACKEND",
        "STORAGE_DATA_DIR",
        "STORAGE_API_BASE_URL",
        "STORAGE_TIMEOUT_SECONDS",
        "SORT_MEDICATIONS",
        "RENAME_COLLISION_POLICY",
        "DEFAULT_MEDICATIONS",
    ):
        monkeypatch.delenv(name, raising=False)


def test_load_config_dev_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ENVIRONMENT", "dev")

    config = load_config_from_env()

    assert config.environment == "development"
    assert config.debug is True
    assert config.logging.format == "console"
    assert config.journal.sort_medications is True
    assert config.journal.rename_collision_policy == "merge"
    assert config.journal.default_medications == ["Paracetamol 1g", "Ibuprofeno 600mg"]
    assert config.storage.backend == "json_file"
    assert config.storage.data_dir == Path("./data")


def test_production_uses_json_logs(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ENVIRONMENT", "production")

    config = load_config_from_env()

    assert config.debug is False
    assert config.logging.format == "json"


def test_logging_level_literal_coercion(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ENVIRONMENT", "staging")

    # Unknown level should coerce to INFO
    monkeypatch.setenv("LOG_LEVEL", "unknown")
    config = load_config_from_env()
    assert config.logging.level == "INFO"

    # Known level should pass through
    monkeypatch.setenv("LOG_LEVEL", "error")
    config = load_config_from_env()
    assert config.logging.level == "ERROR"


def test_journal_policies_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SORT_MEDICATIONS", "no")
    monkeypatch.setenv("RENAME_COLLISION_POLICY", "Reject")
    monkeypatch.setenv("DEFAULT_MEDICATIONS", " Zinc , ,Iron")

    config = load_config_from_env()

    assert config.journal.sort_medications is False
    assert config.journal.rename_collision_policy == "reject"
    assert config.journal.default_medications == ["Zinc", "Iron"]


def test_invalid_collision_policy_fails_fast(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("RENAME_COLLISION_POLICY", "dedupe")

    with pytest.raises(ValueError):
        load_config_from_env()


def test_storage_settings_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("STORAGE_BACKEND", "REST")
    monkeypatch.setenv("STORAGE_API_BASE_URL", "https://journal.example/api/")
    monkeypatch.setenv("STORAGE_TIMEOUT_SECONDS", "2.5")

    config = load_config_from_env()

    assert config.storage.backend == "rest"
    assert config.storage.api_base_url == "https://journal.example/api"
    assert config.storage.timeout_seconds == 2.5


def test_storage_url_must_be_http() -> None:
    with pytest.raises(ValueError, match="http"):
        StorageConfig(api_base_url="ftp://journal.example")


def test_duplicate_default_medications_rejected() -> None:
    with pytest.raises(ValueError, match="unique"):
        JournalConfig(default_medications=["Zinc", "Zinc "])


def test_get_config_cache(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ENVIRONMENT", "development")

    # First call populates cache
    c1 = get_config()
    c2 = get_config()
    assert c1 is c2  # same object due to lru_cache


def test_app_config_debug_only_in_dev_validation() -> None:
    with pytest.raises(ValueError, match="debug mode is only allowed"):
        AppConfig(environment="production", debug=True, logging=LoggingConfig())


def test_memory_backend_not_allowed_in_production() -> None:
    with pytest.raises(ValueError, match="memory storage backend"):
        AppConfig(environment="production", storage=StorageConfig(backend="memory"))
