"""
Domain models for the health journal.

These models represent the core business concepts and are framework-agnostic.
They use Pydantic for validation; the wire names (``healthData``,
``medications``, ``standardPattern``, ``comments``) are part of the export
format and must not change.
"""

import re
from datetime import date
from typing import Annotated

from pydantic import AllowInfNan, BaseModel, ConfigDict, Field, Strict, StrictInt, field_validator


def _build_time_slots() -> tuple[str, ...]:
    slots = []
    for hour in range(8, 24):
        slots.append(f"{hour:02d}:00")
        slots.append(f"{hour:02d}:30")
    return tuple(slots)


# Half-hour labels from 08:00 to 23:30 inclusive
TIME_SLOTS: tuple[str, ...] = _build_time_slots()
_TIME_SLOT_SET = frozenset(TIME_SLOTS)

_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def is_time_slot(label: str) -> bool:
    """Return True if ``label`` is one of the fixed half-hour slot labels."""
    return label in _TIME_SLOT_SET


def is_iso_date(value: str) -> bool:
    """Return True for a real calendar date written as ``YYYY-MM-DD``."""
    if not _ISO_DATE.match(value):
        return False
    try:
        date.fromisoformat(value)
    except ValueError:
        return False
    return True


# JSON has no NaN/Infinity; they would be written as null and lost on export
FiniteFloat = Annotated[float, Strict(), AllowInfNan(False)]


class TimeSlotEntry(BaseModel):
    """One measurement/event at one time-of-day slot on one date."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="forbid")

    value: StrictInt | FiniteFloat | None = None
    medications: list[str] = Field(default_factory=list)
    comment: str = Field(default="", alias="comments")

    def is_empty(self) -> bool:
        return self.value is None and not self.medications and not self.comment


# Type aliases for the mutable containers
DailyRecord = dict[str, TimeSlotEntry]
HealthLog = dict[str, DailyRecord]
StandardPattern = dict[str, list[str]]


class JournalBundle(BaseModel):
    """
    The combined unit of state: health log, medication catalog and standard pattern.

    Used both as the in-memory state of a session and as the export/import
    payload. Field aliases are the export keys.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    health_data: HealthLog = Field(alias="healthData")
    medications: list[str]
    standard_pattern: StandardPattern = Field(alias="standardPattern")

    @field_validator("health_data")
    @classmethod
    def validate_health_data_keys(cls, v: HealthLog) -> HealthLog:
        bad_dates = [key for key in v if not is_iso_date(key)]
        if bad_dates:
            raise ValueError(f"invalid date keys (expected YYYY-MM-DD): {bad_dates}")
        bad_slots = sorted(
            f"{day}/{slot}" for day, record in v.items() for slot in record if not is_time_slot(slot)
        )
        if bad_slots:
            raise ValueError(f"unknown time slots: {bad_slots}")
        return v

    @field_validator("standard_pattern")
    @classmethod
    def validate_pattern_keys(cls, v: StandardPattern) -> StandardPattern:
        bad_slots = sorted(slot for slot in v if not is_time_slot(slot))
        if bad_slots:
            raise ValueError(f"unknown time slots: {bad_slots}")
        return v

    @classmethod
    def empty(cls, medications: list[str] | None = None) -> "JournalBundle":
        return cls(health_data={}, medications=list(medications or []), standard_pattern={})

    def referenced_medications(self) -> set[str]:
        """Every medication name used by a record or by the standard pattern."""
        names: set[str] = set()
        for record in self.health_data.values():
            for entry in record.values():
                names.update(entry.medications)
        for meds in self.standard_pattern.values():
            names.update(meds)
        return names

    def dangling_medications(self) -> set[str]:
        """Referenced names that are missing from the catalog."""
        return self.referenced_medications() - set(self.medications)


class UserSession(BaseModel):
    """Authenticated user returned by a persistence backend's login."""

    model_config = ConfigDict(frozen=True)

    username: str = Field(min_length=1)
    token: str | None = Field(default=None, repr=False)


def day_has_data(record: DailyRecord | None) -> bool:
    """True when any slot of the day holds a value, a medication or a comment."""
    if not record:
        return False
    return any(not entry.is_empty() for entry in record.values())


def value_series(record: DailyRecord | None) -> list[tuple[str, float]]:
    """Numeric readings of a day as ``(slot, value)`` pairs in slot order."""
    if not record:
        return []
    return sorted(
        (slot, float(entry.value)) for slot, entry in record.items() if entry.value is not None
    )
