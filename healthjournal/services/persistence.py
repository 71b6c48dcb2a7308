"""
Persistence port for the health journal.

Key patterns:
- Protocol-based dependency injection (backends are swapped at composition time)
- Generic Result type for expected storage failures
- Explicit user identifier on every call instead of an ambient current user
"""

from typing import Generic, Protocol

import structlog
from typing_extensions import TypeVar

from healthjournal.domain.models import (
    DailyRecord,
    HealthLog,
    JournalBundle,
    StandardPattern,
    UserSession,
)
from healthjournal.observability import configure_structlog

# Production defaults; the CLI reconfigures from AppConfig
configure_structlog()

logger = structlog.get_logger(__name__)

# Generic Result type for explicit error handling
ValueT = TypeVar("ValueT")
ErrorT = TypeVar("ErrorT", bound=BaseException, default=Exception)


class _Unset:
    """Marker for 'no value', so that ``Result.ok(None)`` is a valid success."""

    def __repr__(self) -> str:
        return "<unset>"


_UNSET = _Unset()


class Result(Generic[ValueT, ErrorT]):
    """
    Explicit error handling without exceptions for expected failures.

    Storage backends return these; the journal service decides what a failure
    means for in-memory state.
    """

    def __init__(
        self, value: ValueT | _Unset = _UNSET, error: ErrorT | None = None
    ) -> None:
        if value is not _UNSET and error is not None:
            raise ValueError("Result cannot have both value and error")
        if value is _UNSET and error is None:
            raise ValueError("Result must have either value or error")
        self._value = value
        self._error: ErrorT | None = error

    @classmethod
    def ok(cls, value: ValueT) -> "Result[ValueT, ErrorT]":
        return cls(value=value)

    @classmethod
    def err(cls, error: ErrorT) -> "Result[ValueT, ErrorT]":
        return cls(error=error)

    def is_ok(self) -> bool:
        return self._error is None

    def is_err(self) -> bool:
        return self._error is not None

    def unwrap(self) -> ValueT:
        if self._error is not None:
            raise self._error
        return self._value  # type: ignore[return-value]

    def unwrap_or(self, default: ValueT) -> ValueT:
        return self._value if self._error is None else default  # type: ignore[return-value]

    def unwrap_err(self) -> ErrorT:
        if self._error is None:
            raise ValueError("Called unwrap_err() on an Ok value")
        return self._error

    def __repr__(self) -> str:
        if self._error is not None:
            return f"Result.err({self._error!r})"
        return f"Result.ok({self._value!r})"


class PersistencePort(Protocol):
    """
    Storage collaborator of the journal.

    Each write is a logically atomic single-entity write. Backends that can
    replace all three entities in one step set ``supports_atomic_import``.
    """

    backend_name: str
    supports_atomic_import: bool

    async def load_all(self, user: str) -> Result[JournalBundle]:
        """Return the user's full bundle, or an empty bundle for a new user."""
        ...

    async def save_daily_record(self, user: str, day: str, record: DailyRecord) -> Result[None]:
        """Upsert one date's record."""
        ...

    async def save_catalog(self, user: str, medications: list[str]) -> Result[None]:
        """Replace the medication list."""
        ...

    async def save_pattern(self, user: str, pattern: StandardPattern) -> Result[None]:
        """Replace the standard pattern."""
        ...

    async def replace_health_log(self, user: str, health_log: HealthLog) -> Result[None]:
        """Replace every daily record of the user, dropping dates not in ``health_log``."""
        ...

    async def replace_all(self, user: str, bundle: JournalBundle) -> Result[None]:
        """Replace all three entities. Atomic only if ``supports_atomic_import``."""
        ...

    async def login(self, username: str, password: str) -> UserSession | None:
        ...

    async def logout(self, session: UserSession) -> None:
        ...

    # User administration

    async def list_users(self) -> Result[list[str]]:
        """Registered usernames, sorted."""
        ...

    async def register_user(self, username: str, password: str) -> Result[None]:
        """Create an account. ``UserExistsError`` if the name is taken."""
        ...

    async def change_password(self, username: str, password: str) -> Result[None]:
        """Replace the password. ``UnknownUserError`` if there is no such account."""
        ...

    async def delete_user(self, username: str) -> Result[None]:
        """Remove the account and its journal data."""
        ...

    async def aclose(self) -> None:
        """Release connections and other resources held by the backend."""
        ...
