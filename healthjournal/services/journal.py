"""
Journal service: one user's session over the health journal.

Orchestrates the consistency engine, the codec and the persistence port:
1. Validate the request against the current in-memory bundle
2. Compute the new bundle (pure, synchronous)
3. Swap it in optimistically
4. Write the affected entities through the port
5. On a failed write, restore the last-known-good bundle and raise

Mutations are serialized with an ``asyncio.Lock`` so that two catalog
operations never read-modify-write the same state concurrently.
"""

import asyncio
from collections.abc import Awaitable, Callable, Mapping
from typing import Any

import structlog
from pydantic import ValidationError

from healthjournal.config import JournalConfig
from healthjournal.domain.errors import (
    PartialImportError,
    PersistenceError,
    PreconditionViolation,
    UnknownMedicationError,
)
from healthjournal.domain.models import (
    DailyRecord,
    JournalBundle,
    StandardPattern,
    TimeSlotEntry,
    UserSession,
    is_iso_date,
    is_time_slot,
)
from healthjournal.services import codec
from healthjournal.services.consistency import (
    CatalogChange,
    add_medication,
    apply_pattern,
    clean_pattern,
    delete_medication,
    rename_medication,
)
from healthjournal.services.persistence import PersistencePort, Result

logger = structlog.get_logger(__name__)

WriteStep = tuple[str, Callable[[], Awaitable[Result[None]]]]


class JournalService:
    """
    In-memory state of one user's journal, kept in step with a persistence backend.

    Rollback policy: the previous bundle is kept as the last-known-good
    snapshot. If any write fails, in-memory state goes back to it and a
    ``PersistenceError`` is raised. When some writes of the same mutation had
    already succeeded the error is ``partial`` and the service is marked
    ``stale``; call ``reload()`` to fetch the authoritative state.
    """

    def __init__(
        self,
        store: PersistencePort,
        user: str,
        config: JournalConfig | None = None,
        session: UserSession | None = None,
    ) -> None:
        self.store = store
        self.user = user
        self.config = config or JournalConfig()
        self.session = session
        self.stale = False
        self._bundle: JournalBundle | None = None
        self._lock = asyncio.Lock()
        self.logger = logger.bind(component="journal_service", user=user)

    # State access

    @property
    def bundle(self) -> JournalBundle:
        if self._bundle is None:
            raise RuntimeError("Journal not loaded - call load() first")
        return self._bundle

    @property
    def medications(self) -> list[str]:
        return list(self.bundle.medications)

    @property
    def standard_pattern(self) -> StandardPattern:
        return {slot: list(meds) for slot, meds in self.bundle.standard_pattern.items()}

    def daily_record(self, day: str) -> DailyRecord:
        """The record for ``day``; empty when nothing was logged."""
        return dict(self.bundle.health_data.get(day, {}))

    async def load(self) -> JournalBundle:
        """Fetch the authoritative bundle from the backend."""
        async with self._lock:
            result = await self.store.load_all(self.user)
            if result.is_err():
                self.logger.error("journal_load_failed", error=str(result.unwrap_err()))
                raise PersistenceError("load_all", result.unwrap_err())
            self._bundle = result.unwrap()
            self.stale = False
            self.logger.info(
                "journal_loaded",
                dates=len(self._bundle.health_data),
                medications=len(self._bundle.medications),
            )
            return self._bundle

    reload = load

    async def close(self) -> None:
        """End the session on the backend and release the backend's resources."""
        if self.session is not None:
            await self.store.logout(self.session)
            self.session = None
        await self.store.aclose()
        self.logger.info("journal_closed")

    # Commit machinery

    async def _commit(
        self, operation: str, new_bundle: JournalBundle, writes: list[WriteStep]
    ) -> JournalBundle:
        previous = self.bundle
        self._bundle = new_bundle
        completed: list[str] = []

        for step, write in writes:
            result = await write()
            if result.is_err():
                error = result.unwrap_err()
                self._bundle = previous
                partial = bool(completed)
                if partial:
                    self.stale = True
                self.logger.error(
                    "journal_write_failed",
                    operation=operation,
                    failed_step=step,
                    completed_steps=completed,
                    partial=partial,
                    error=str(error),
                )
                raise PersistenceError(
                    operation, error, partial=partial, completed_steps=completed
                )
            completed.append(step)

        self.logger.info("journal_committed", operation=operation, writes=len(completed))
        return new_bundle

    def _catalog_writes(self, change: CatalogChange) -> list[WriteStep]:
        """Records first, then the pattern, then the catalog."""
        bundle = change.bundle
        writes: list[WriteStep] = []
        for day in sorted(change.touched_dates):
            record = bundle.health_data[day]
            writes.append(
                (
                    f"save_daily_record:{day}",
                    lambda day=day, record=record: self.store.save_daily_record(
                        self.user, day, record
                    ),
                )
            )
        if change.pattern_changed:
            pattern = bundle.standard_pattern
            writes.append(("save_pattern", lambda: self.store.save_pattern(self.user, pattern)))
        if change.catalog_changed:
            medications = bundle.medications
            writes.append(
                ("save_catalog", lambda: self.store.save_catalog(self.user, medications))
            )
        return writes

    def _check_known(self, names: set[str]) -> None:
        unknown = names - set(self.bundle.medications)
        if unknown:
            raise UnknownMedicationError(sorted(unknown)[0])

    # Records

    async def update_daily_record(self, day: str, record: Mapping[str, Any]) -> DailyRecord:
        """
        Replace the whole record of ``day``.

        Values may be ``TimeSlotEntry`` objects or plain mappings in export
        format. Every referenced medication must be in the catalog.
        """
        if not is_iso_date(day):
            raise PreconditionViolation(f"Invalid date {day!r}, expected YYYY-MM-DD")
        new_record: DailyRecord = {}
        for slot, entry in record.items():
            if not is_time_slot(slot):
                raise PreconditionViolation(f"Invalid time slot {slot!r}")
            if isinstance(entry, TimeSlotEntry):
                new_record[slot] = entry
                continue
            try:
                new_record[slot] = TimeSlotEntry.model_validate(entry)
            except ValidationError as e:
                raise PreconditionViolation(f"Invalid entry for {day} {slot}: {e}") from e

        async with self._lock:
            self._check_known({m for entry in new_record.values() for m in entry.medications})
            health_data = {**self.bundle.health_data, day: new_record}
            new_bundle = self.bundle.model_copy(update={"health_data": health_data})
            await self._commit(
                "update_daily_record",
                new_bundle,
                [
                    (
                        f"save_daily_record:{day}",
                        lambda: self.store.save_daily_record(self.user, day, new_record),
                    )
                ],
            )
        return dict(new_record)

    async def update_slot(self, day: str, slot: str, entry: TimeSlotEntry) -> DailyRecord:
        """Replace one slot's entry, keeping the rest of the day."""
        record = {**self.daily_record(day), slot: entry}
        return await self.update_daily_record(day, record)

    async def apply_standard_pattern(self, day: str) -> DailyRecord:
        """Pre-fill ``day``'s medications from the standard pattern."""
        current = self.bundle.health_data.get(day)
        record = apply_pattern(current, self.bundle.standard_pattern)
        if record == (current or {}):
            return record
        return await self.update_daily_record(day, record)

    # Medication catalog

    async def add_medication(self, name: str) -> list[str]:
        async with self._lock:
            change = add_medication(self.bundle, name.strip(), sort=self.config.sort_medications)
            if not change.is_noop:
                await self._commit("add_medication", change.bundle, self._catalog_writes(change))
            return self.medications

    async def rename_medication(self, old_name: str, new_name: str) -> list[str]:
        """Rename a medication in the catalog, every record and the standard pattern."""
        async with self._lock:
            change = rename_medication(
                self.bundle,
                old_name,
                new_name.strip(),
                sort=self.config.sort_medications,
                collision_policy=self.config.rename_collision_policy,
            )
            if not change.is_noop:
                await self._commit(
                    "rename_medication", change.bundle, self._catalog_writes(change)
                )
                self.logger.info(
                    "medication_renamed",
                    old=old_name,
                    new=new_name.strip(),
                    touched_dates=len(change.touched_dates),
                )
            return self.medications

    async def delete_medication(self, name: str) -> list[str]:
        """Delete a medication from the catalog, every record and the standard pattern."""
        async with self._lock:
            change = delete_medication(self.bundle, name)
            await self._commit("delete_medication", change.bundle, self._catalog_writes(change))
            self.logger.info(
                "medication_deleted", medication=name, touched_dates=len(change.touched_dates)
            )
            return self.medications

    # Standard pattern

    async def save_standard_pattern(self, pattern: Mapping[str, list[str]]) -> StandardPattern:
        """Store a new pattern; slots with empty lists are dropped."""
        bad_slots = sorted(slot for slot in pattern if not is_time_slot(slot))
        if bad_slots:
            raise PreconditionViolation(f"Invalid time slots: {bad_slots}")
        cleaned = clean_pattern(dict(pattern))

        async with self._lock:
            self._check_known({m for meds in cleaned.values() for m in meds})
            new_bundle = self.bundle.model_copy(update={"standard_pattern": cleaned})
            await self._commit(
                "save_standard_pattern",
                new_bundle,
                [("save_pattern", lambda: self.store.save_pattern(self.user, cleaned))],
            )
        return self.standard_pattern

    # Import / export

    def export_bundle(self) -> dict[str, Any]:
        return codec.export_bundle(self.bundle)

    def export_json(self) -> str:
        return codec.to_json(self.bundle)

    def export_token(self) -> str:
        return codec.encode_token(self.bundle)

    async def import_bundle(self, data: JournalBundle | Mapping[str, Any]) -> JournalBundle:
        """
        Replace all journal data with ``data``. This is an overwrite, not a merge.

        Raises:
            BundleValidationError: malformed input; nothing was changed.
            PersistenceError: the backend stored nothing.
            PartialImportError: a non-atomic backend stored some entities only.
        """
        if isinstance(data, JournalBundle):
            bundle = data.model_copy(
                update={"standard_pattern": clean_pattern(data.standard_pattern)}
            )
        else:
            bundle = codec.validate_bundle(dict(data))

        async with self._lock:
            previous = self.bundle
            if self.store.supports_atomic_import:
                await self._commit(
                    "import",
                    bundle,
                    [("replace_all", lambda: self.store.replace_all(self.user, bundle))],
                )
            else:
                await self._import_stepwise(previous, bundle)

            self.logger.info(
                "import_completed",
                dates=len(bundle.health_data),
                medications=len(bundle.medications),
                atomic=self.store.supports_atomic_import,
            )
            return bundle

    async def _import_stepwise(self, previous: JournalBundle, bundle: JournalBundle) -> None:
        steps: list[WriteStep] = [
            ("save_catalog", lambda: self.store.save_catalog(self.user, bundle.medications)),
            (
                "save_pattern",
                lambda: self.store.save_pattern(self.user, bundle.standard_pattern),
            ),
            (
                "replace_health_log",
                lambda: self.store.replace_health_log(self.user, bundle.health_data),
            ),
        ]
        try:
            await self._commit("import", bundle, steps)
        except PersistenceError as e:
            if not e.partial:
                raise
            failed_step = steps[len(e.completed_steps)][0]
            self.logger.error(
                "import_partially_applied",
                completed_steps=e.completed_steps,
                failed_step=failed_step,
                previous_medications=previous.medications,
                imported_medications=bundle.medications,
                error=str(e.cause),
            )
            raise PartialImportError(
                e.cause, completed_steps=e.completed_steps, failed_step=failed_step
            ) from e

    async def import_json(self, text: str) -> JournalBundle:
        return await self.import_bundle(codec.parse_json(text))

    async def import_token(self, token: str) -> JournalBundle:
        return await self.import_bundle(codec.decode_token(token))


async def start_session(
    store: PersistencePort,
    username: str,
    password: str,
    config: JournalConfig | None = None,
) -> JournalService | None:
    """Log in and load the user's journal. Returns None on bad credentials."""
    session = await store.login(username, password)
    if session is None:
        logger.info("session_rejected", username=username)
        return None
    service = JournalService(store, session.username, config=config, session=session)
    await service.load()
    return service
