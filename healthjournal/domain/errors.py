"""
Exception hierarchy for the health journal.

Expected storage failures travel inside ``Result`` values in the adapters and
are turned into these exceptions at the service boundary.
"""


class HealthJournalError(Exception):
    """Base class for all health journal errors."""


class BundleValidationError(HealthJournalError, ValueError):
    """An import bundle or transport token is malformed. Nothing was changed."""

    def __init__(self, message: str, problems: list[str] | None = None) -> None:
        super().__init__(message)
        self.problems: list[str] = problems or []


class PreconditionViolation(HealthJournalError, ValueError):
    """A catalog operation was called with arguments that break its preconditions."""


class UnknownMedicationError(PreconditionViolation):
    """The medication is not in the catalog."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Medication {name!r} is not in the catalog")
        self.name = name


class InvalidMedicationNameError(PreconditionViolation):
    """A medication name is empty or whitespace only."""


class MedicationExistsError(PreconditionViolation):
    """Rename target already exists and the collision policy rejects merges."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Medication {name!r} already exists in the catalog")
        self.name = name


class UserExistsError(PreconditionViolation):
    def __init__(self, username: str) -> None:
        super().__init__(f"User {username!r} already exists")
        self.username = username


class UnknownUserError(PreconditionViolation):
    def __init__(self, username: str) -> None:
        super().__init__(f"User {username!r} does not exist")
        self.username = username


class PersistenceError(HealthJournalError):
    """A write to the persistence backend failed.

    ``partial`` is True when some writes of the same mutation had already been
    stored; the persisted state may then differ from both the old and the new
    in-memory state and must be re-fetched.
    """

    def __init__(
        self,
        operation: str,
        cause: BaseException | None = None,
        *,
        partial: bool = False,
        completed_steps: list[str] | None = None,
    ) -> None:
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"Persistence failed during {operation}{detail}")
        self.operation = operation
        self.cause = cause
        self.partial = partial
        self.completed_steps: list[str] = completed_steps or []


class PartialImportError(PersistenceError):
    """Import on a non-atomic backend stored some entities but not all."""

    def __init__(
        self,
        cause: BaseException | None,
        *,
        completed_steps: list[str],
        failed_step: str,
    ) -> None:
        super().__init__("import", cause, partial=True, completed_steps=completed_steps)
        self.failed_step = failed_step
