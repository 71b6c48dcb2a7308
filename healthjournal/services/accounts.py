"""
User administration over the persistence port.

Mirrors the account screen of the journal: list users, add a user, change a
password, delete a user. Names and passwords are trimmed and must not be empty.
Backend failures become exceptions here, like in the journal service.
"""

import structlog

from healthjournal.domain.errors import (
    HealthJournalError,
    PersistenceError,
    PreconditionViolation,
)
from healthjournal.services.persistence import PersistencePort, Result

logger = structlog.get_logger(__name__)


def _required(value: str, what: str) -> str:
    value = value.strip()
    if not value:
        raise PreconditionViolation(f"{what} must not be empty")
    return value


class AccountService:
    """Account management for one persistence backend."""

    def __init__(self, store: PersistencePort) -> None:
        self.store = store
        self.logger = logger.bind(component="account_service", backend=store.backend_name)

    def _unwrap(self, operation: str, result: Result) -> None:
        if result.is_ok():
            return
        error = result.unwrap_err()
        # Domain errors (taken name, unknown user) are the caller's to handle
        if isinstance(error, HealthJournalError):
            raise error
        self.logger.error("account_operation_failed", operation=operation, error=str(error))
        raise PersistenceError(operation, error)

    async def list_users(self) -> list[str]:
        result = await self.store.list_users()
        self._unwrap("list_users", result)
        return result.unwrap()

    async def add_user(self, username: str, password: str) -> str:
        username = _required(username, "Username")
        password = _required(password, "Password")
        self._unwrap("register_user", await self.store.register_user(username, password))
        self.logger.info("user_added", username=username)
        return username

    async def change_password(self, username: str, password: str) -> None:
        password = _required(password, "Password")
        self._unwrap("change_password", await self.store.change_password(username, password))
        self.logger.info("password_changed", username=username)

    async def delete_user(self, username: str) -> None:
        self._unwrap("delete_user", await self.store.delete_user(username))
        self.logger.info("user_deleted", username=username)

    async def close(self) -> None:
        await self.store.aclose()
