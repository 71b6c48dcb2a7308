"""
Persistence backends implementing ``healthjournal.services.persistence.PersistencePort``.

The backend is picked at composition time from ``StorageConfig``.
"""

from healthjournal.config import AppConfig
from healthjournal.services.persistence import PersistencePort

from .json_file import JsonFileStore
from .memory import InMemoryStore
from .rest import RestBackendError, RestStore


def open_store(config: AppConfig) -> PersistencePort:
    """Build the persistence backend selected by ``config.storage.backend``."""
    storage = config.storage
    seed = config.journal.default_medications
    if storage.backend == "memory":
        return InMemoryStore(
            default_medications=seed, latency_seconds=storage.simulated_latency_seconds
        )
    if storage.backend == "json_file":
        return JsonFileStore(storage.data_dir, default_medications=seed)
    if storage.backend == "rest":
        return RestStore(storage.api_base_url, timeout_seconds=storage.timeout_seconds)
    raise ValueError(f"Unknown storage backend: {storage.backend}")


__all__ = [
    "InMemoryStore",
    "JsonFileStore",
    "RestBackendError",
    "RestStore",
    "open_store",
]
