"""Domain models and errors for the health journal."""

from .errors import (
    BundleValidationError,
    HealthJournalError,
    InvalidMedicationNameError,
    MedicationExistsError,
    PartialImportError,
    PersistenceError,
    PreconditionViolation,
    UnknownMedicationError,
    UnknownUserError,
    UserExistsError,
)
from .models import (
    TIME_SLOTS,
    DailyRecord,
    HealthLog,
    JournalBundle,
    StandardPattern,
    TimeSlotEntry,
    UserSession,
    day_has_data,
    is_iso_date,
    is_time_slot,
    value_series,
)

__all__ = [
    "TIME_SLOTS",
    "BundleValidationError",
    "DailyRecord",
    "HealthJournalError",
    "HealthLog",
    "InvalidMedicationNameError",
    "JournalBundle",
    "MedicationExistsError",
    "PartialImportError",
    "PersistenceError",
    "PreconditionViolation",
    "StandardPattern",
    "TimeSlotEntry",
    "UnknownMedicationError",
    "UnknownUserError",
    "UserExistsError",
    "UserSession",
    "day_has_data",
    "is_iso_date",
    "is_time_slot",
    "value_series",
]
