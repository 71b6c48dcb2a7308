"""
Consistency engine for the medication catalog.

Keeps the catalog, every daily record and the standard pattern mutually
consistent when a medication is added, renamed or deleted.

All functions are pure: they never mutate the bundle they are given and
return a ``CatalogChange`` holding the new bundle. Entries, records and
pattern slots that do not reference the affected name are carried over as
the same objects.
"""

from dataclasses import dataclass, field

import structlog

from healthjournal.config import RenameCollisionPolicy
from healthjournal.domain.errors import (
    InvalidMedicationNameError,
    MedicationExistsError,
    UnknownMedicationError,
)
from healthjournal.domain.models import (
    DailyRecord,
    HealthLog,
    JournalBundle,
    StandardPattern,
    TimeSlotEntry,
)

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class CatalogChange:
    """Result of a catalog mutation and what a backend has to rewrite."""

    bundle: JournalBundle
    touched_dates: frozenset[str] = field(default_factory=frozenset)
    catalog_changed: bool = False
    pattern_changed: bool = False

    @property
    def is_noop(self) -> bool:
        return not (self.catalog_changed or self.pattern_changed or self.touched_dates)


def _require_name(name: str) -> str:
    if not name or not name.strip():
        raise InvalidMedicationNameError("Medication name must not be empty")
    return name


def _ordered(medications: list[str], sort: bool) -> list[str]:
    return sorted(medications) if sort else medications


class _MedsRewrite:
    """Callable returning a rewritten list, or None when ``name`` is absent."""

    def __init__(self, name: str, replacement: str | None) -> None:
        self.name = name
        self.replacement = replacement

    def __call__(self, medications: list[str]) -> list[str] | None:
        if self.name not in medications:
            return None
        if self.replacement is None:
            return [m for m in medications if m != self.name]
        return [self.replacement if m == self.name else m for m in medications]


def _rewrite_health_log(
    health_log: HealthLog, rewrite: _MedsRewrite
) -> tuple[HealthLog, frozenset[str]]:
    new_log: HealthLog = {}
    touched: set[str] = set()
    for day, record in health_log.items():
        new_record: DailyRecord | None = None
        for slot, entry in record.items():
            meds = rewrite(entry.medications)
            if meds is None:
                continue
            if new_record is None:
                new_record = dict(record)
            new_record[slot] = entry.model_copy(update={"medications": meds})
        if new_record is None:
            new_log[day] = record
        else:
            new_log[day] = new_record
            touched.add(day)
    return new_log, frozenset(touched)


def add_medication(bundle: JournalBundle, name: str, *, sort: bool = True) -> CatalogChange:
    """Insert ``name`` into the catalog; a no-op if it is already there."""
    _require_name(name)
    if name in bundle.medications:
        return CatalogChange(bundle=bundle)

    medications = _ordered([*bundle.medications, name], sort)
    logger.debug("medication_added", medication=name)
    return CatalogChange(
        bundle=bundle.model_copy(update={"medications": medications}),
        catalog_changed=True,
    )


def rename_medication(
    bundle: JournalBundle,
    old_name: str,
    new_name: str,
    *,
    sort: bool = True,
    collision_policy: RenameCollisionPolicy = "merge",
) -> CatalogChange:
    """
    Rename ``old_name`` to ``new_name`` everywhere.

    The catalog keeps the position of the renamed entry (before sorting).
    Every occurrence in every entry and pattern slot is replaced in place, so
    list lengths and reference counts do not change. Lists are never
    deduplicated. If ``new_name`` is already in the catalog, ``merge`` keeps
    a single catalog entry and ``reject`` raises ``MedicationExistsError``.
    """
    if old_name not in bundle.medications:
        raise UnknownMedicationError(old_name)
    _require_name(new_name)
    if old_name == new_name:
        return CatalogChange(bundle=bundle)

    collides = new_name in bundle.medications
    if collides and collision_policy == "reject":
        raise MedicationExistsError(new_name)

    if collides:
        medications = [m for m in bundle.medications if m != old_name]
    else:
        medications = [new_name if m == old_name else m for m in bundle.medications]

    rewrite = _MedsRewrite(old_name, new_name)
    health_data, touched = _rewrite_health_log(bundle.health_data, rewrite)
    pattern, pattern_changed = _rewrite_pattern(bundle.standard_pattern, rewrite)

    logger.debug(
        "medication_renamed",
        old=old_name,
        new=new_name,
        merged=collides,
        touched_dates=len(touched),
        pattern_changed=pattern_changed,
    )
    return CatalogChange(
        bundle=bundle.model_copy(
            update={
                "medications": _ordered(medications, sort),
                "health_data": health_data,
                "standard_pattern": pattern,
            }
        ),
        touched_dates=touched,
        catalog_changed=True,
        pattern_changed=pattern_changed,
    )


def delete_medication(bundle: JournalBundle, name: str) -> CatalogChange:
    """
    Remove ``name`` from the catalog, every entry and every pattern slot.

    Entries whose medication list becomes empty are kept (they may still hold
    a value or a comment). Pattern slots whose list becomes empty are removed.
    """
    if name not in bundle.medications:
        raise UnknownMedicationError(name)

    rewrite = _MedsRewrite(name, None)
    health_data, touched = _rewrite_health_log(bundle.health_data, rewrite)
    pattern, pattern_changed = _rewrite_pattern(bundle.standard_pattern, rewrite)

    logger.debug(
        "medication_deleted",
        medication=name,
        touched_dates=len(touched),
        pattern_changed=pattern_changed,
    )
    return CatalogChange(
        bundle=bundle.model_copy(
            update={
                "medications": [m for m in bundle.medications if m != name],
                "health_data": health_data,
                "standard_pattern": pattern,
            }
        ),
        touched_dates=touched,
        catalog_changed=True,
        pattern_changed=pattern_changed,
    )


def _rewrite_pattern(
    pattern: StandardPattern, rewrite: _MedsRewrite
) -> tuple[StandardPattern, bool]:
    new_pattern: StandardPattern = {}
    changed = False
    for slot, meds in pattern.items():
        rewritten = rewrite(meds)
        if rewritten is None:
            new_pattern[slot] = meds
            continue
        changed = True
        if rewritten:
            new_pattern[slot] = rewritten
    return new_pattern, changed


def clean_pattern(pattern: StandardPattern) -> StandardPattern:
    """Drop slots with no medications."""
    return {slot: list(meds) for slot, meds in pattern.items() if meds}


def apply_pattern(record: DailyRecord | None, pattern: StandardPattern) -> DailyRecord:
    """
    Pre-fill a day from the standard pattern.

    Each pattern slot's medications replace the entry's list; existing values
    and comments are kept. Slots the pattern does not mention are untouched.
    """
    new_record: DailyRecord = dict(record or {})
    for slot, meds in clean_pattern(pattern).items():
        current = new_record.get(slot)
        if current is None:
            new_record[slot] = TimeSlotEntry(medications=meds)
        else:
            new_record[slot] = current.model_copy(update={"medications": meds})
    return new_record
