"""
Configuration management with environment variable support and validation.

Design principles:
- Environment-specific configs (dev, staging, prod)
- Validation at startup (fail fast)
- Type safety with Pydantic
- Secure defaults (no credentials in code)
"""

import os
from functools import lru_cache
from pathlib import Path
from typing import Literal, cast

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator, model_validator

# Load environment variables from .env file
load_dotenv()

RenameCollisionPolicy = Literal["merge", "reject"]
StorageBackend = Literal["memory", "json_file", "rest"]

DEFAULT_MEDICATIONS = ["Paracetamol 1g", "Ibuprofeno 600mg"]


class JournalConfig(BaseModel):
    """Behaviour of the medication catalog and its dependents."""

    sort_medications: bool = Field(
        default=True, description="Keep the medication catalog sorted ascending after mutations"
    )
    rename_collision_policy: RenameCollisionPolicy = Field(
        default="merge",
        description="What to do when a rename targets a name already in the catalog",
    )
    default_medications: list[str] = Field(
        default_factory=lambda: list(DEFAULT_MEDICATIONS),
        description="Seed catalog for users without stored data",
    )

    @field_validator("default_medications")
    def validate_default_medications(cls, v: list[str]) -> list[str]:
        cleaned = [name.strip() for name in v if name.strip()]
        if len(set(cleaned)) != len(cleaned):
            raise ValueError("default medications must be unique")
        return cleaned


class StorageConfig(BaseModel):
    """Persistence backend selection and connection settings."""

    backend: StorageBackend = Field(default="json_file", description="Persistence backend")
    data_dir: Path = Field(
        default=Path("./data"), description="Directory for the JSON file backend"
    )
    api_base_url: str = Field(
        default="http://localhost:8000/api", description="Base URL of the REST backend"
    )
    timeout_seconds: float = Field(
        default=10.0, gt=0.0, description="Timeout for REST backend requests"
    )
    simulated_latency_seconds: float = Field(
        default=0.0, ge=0.0, description="Artificial delay for the in-memory backend"
    )

    @field_validator("api_base_url")
    def validate_api_base_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("API base URL must start with http:// or https://")
        return v.rstrip("/")


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Logging level"
    )
    format: Literal["json", "console"] = Field(default="json", description="Logging format")


class AppConfig(BaseModel):
    """Main application configuration combining all subsystems."""

    # Environment
    environment: Literal["development", "staging", "production"] = Field(
        default="development", description="Environment"
    )
    debug: bool = Field(default=False, description="Enable debug mode")

    # Component configs
    journal: JournalConfig = Field(default_factory=JournalConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @model_validator(mode="after")
    def debug_only_in_dev(self) -> "AppConfig":
        """Ensure debug mode is only allowed in development environment."""
        if self.debug and self.environment != "development":
            raise ValueError("debug mode is only allowed in development environment")
        return self

    @model_validator(mode="after")
    def memory_backend_not_in_production(self) -> "AppConfig":
        """The in-memory backend loses everything on exit."""
        if self.storage.backend == "memory" and self.environment == "production":
            raise ValueError("memory storage backend is not allowed in production")
        return self


def load_config_from_env() -> AppConfig:
    """Load configuration from environment variables with validation."""

    def _env_to_literal(val: str) -> Literal["development", "staging", "production"]:
        v = val.strip().lower()
        if v in {"dev", "development"}:
            return "development"
        if v in {"stage", "staging"}:
            return "staging"
        return "production"

    def _level_to_literal(val: str) -> Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]:
        v = val.strip().upper()
        return cast(
            Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
            v if v in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"} else "INFO",
        )

    def _parse_bool(val: str | None, default: bool) -> bool:
        if val is None:
            return default
        return val.strip().lower() in {"1", "true", "yes", "on"}

    def _parse_list(val: str | None, default: list[str]) -> list[str]:
        if val is None:
            return list(default)
        return [item.strip() for item in val.split(",") if item.strip()]

    # Detect environment
    environment = _env_to_literal(os.getenv("ENVIRONMENT", "development"))
    debug = environment == "development"

    journal_config = JournalConfig(
        sort_medications=_parse_bool(os.getenv("SORT_MEDICATIONS"), True),
        rename_collision_policy=cast(
            RenameCollisionPolicy,
            os.getenv("RENAME_COLLISION_POLICY", "merge").strip().lower(),
        ),
        default_medications=_parse_list(os.getenv("DEFAULT_MEDICATIONS"), DEFAULT_MEDICATIONS),
    )

    storage_config = StorageConfig(
        backend=cast(StorageBackend, os.getenv("STORAGE_BACKEND", "json_file").strip().lower()),
        data_dir=Path(os.getenv("STORAGE_DATA_DIR", "./data")),
        api_base_url=os.getenv("STORAGE_API_BASE_URL", "http://localhost:8000/api"),
        timeout_seconds=float(os.getenv("STORAGE_TIMEOUT_SECONDS", "10.0")),
    )

    # Logging config
    logging_config = LoggingConfig(
        level=_level_to_literal(os.getenv("LOG_LEVEL", "INFO")),
        format="console" if debug else "json",
    )

    # Application config
    return AppConfig(
        environment=environment,
        debug=debug,
        journal=journal_config,
        storage=storage_config,
        logging=logging_config,
    )


@lru_cache
def get_config() -> AppConfig:
    """Get cached application configuration."""
    return load_config_from_env()


def validate_config() -> None:
    """Validate configuration at startup."""
    try:
        config = get_config()
        print(f"Configuration loaded for {config.environment} environment")
        print(f"Storage backend: {config.storage.backend}")
    except Exception as e:
        print(f"Configuration validation failed: {e}")
        raise


def print_config_summary() -> None:
    """Print configuration summary for debugging."""
    config = get_config()

    print("\nCONFIGURATION SUMMARY")
    print(f"Environment: {config.environment}")
    print(f"Debug Mode: {config.debug}")
    print(f"Log Level: {config.logging.level}")

    print("\nJOURNAL")
    print(f"Sort Medications: {config.journal.sort_medications}")
    print(f"Rename Collision Policy: {config.journal.rename_collision_policy}")
    print(f"Default Medications: {', '.join(config.journal.default_medications)}")

    print("\nSTORAGE")
    print(f"Backend: {config.storage.backend}")
    if config.storage.backend == "json_file":
        print(f"Data Dir: {config.storage.data_dir}")
    elif config.storage.backend == "rest":
        print(f"API: {config.storage.api_base_url} (timeout {config.storage.timeout_seconds}s)")


if __name__ == "__main__":
    # Test configuration loading
    validate_config()
    print_config_summary()
