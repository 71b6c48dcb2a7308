"""Shared fixtures for the health journal tests."""

from __future__ import annotations

import pytest

from adapters.storage.memory import InMemoryStore
from healthjournal.config import JournalConfig
from healthjournal.domain.models import JournalBundle, TimeSlotEntry
from healthjournal.services.journal import JournalService


@pytest.fixture
def sample_bundle() -> JournalBundle:
    return JournalBundle(
        health_data={
            "2024-01-01": {
                "08:00": TimeSlotEntry(
                    value=5, medications=["Paracetamol", "Ibuprofen"], comment="ok"
                ),
                "12:30": TimeSlotEntry(value=7.5, medications=[], comment="after lunch"),
            },
            "2024-01-02": {
                "20:00": TimeSlotEntry(value=None, medications=["Paracetamol"], comment=""),
            },
            "2024-01-03": {
                "09:00": TimeSlotEntry(value=3, medications=["Ibuprofen"], comment="calm"),
            },
        },
        medications=["Ibuprofen", "Paracetamol"],
        standard_pattern={
            "08:00": ["Paracetamol"],
            "20:00": ["Paracetamol", "Ibuprofen"],
        },
    )


@pytest.fixture
async def store(sample_bundle: JournalBundle) -> InMemoryStore:
    store = InMemoryStore(default_medications=["Paracetamol 1g"])
    (await store.register_user("ana", "secreto")).unwrap()
    store._bundles["ana"] = sample_bundle.model_copy(deep=True)
    return store


@pytest.fixture
async def service(store: InMemoryStore) -> JournalService:
    service = JournalService(store, "ana", JournalConfig())
    await service.load()
    return service
