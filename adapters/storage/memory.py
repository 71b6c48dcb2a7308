"""
In-memory persistence backend.

Keeps every user's bundle in process memory. Used by tests and demos, and
with ``latency_seconds`` set it doubles as the slow backend for exercising
optimistic updates. Failures can be injected per operation.
"""

import asyncio
import secrets

import structlog

from adapters.storage.credentials import hash_password, verify_password
from healthjournal.domain.errors import UnknownUserError, UserExistsError
from healthjournal.domain.models import (
    DailyRecord,
    HealthLog,
    JournalBundle,
    StandardPattern,
    UserSession,
)
from healthjournal.services.persistence import Result

logger = structlog.get_logger(__name__)


class InMemoryStore:
    """
    Persistence port backed by dictionaries.

    ``fail_on`` holds operation names (``save_catalog``, ``save_daily_record``,
    ...) that return an error instead of writing, to simulate a flaky backend.
    """

    backend_name = "memory"

    def __init__(
        self,
        *,
        default_medications: list[str] | None = None,
        latency_seconds: float = 0.0,
        atomic_import: bool = True,
    ) -> None:
        self.default_medications = list(default_medications or [])
        self.latency_seconds = latency_seconds
        self.supports_atomic_import = atomic_import
        self.fail_on: set[str] = set()
        self.calls: list[str] = []
        self._bundles: dict[str, JournalBundle] = {}
        self._passwords: dict[str, str] = {}
        self._sessions: dict[str, str] = {}
        self.logger = logger.bind(backend=self.backend_name)

    def snapshot(self, user: str) -> JournalBundle | None:
        """Stored bundle for ``user`` as a detached copy, or None."""
        bundle = self._bundles.get(user)
        return bundle.model_copy(deep=True) if bundle is not None else None

    async def _enter(self, operation: str) -> Exception | None:
        self.calls.append(operation)
        if self.latency_seconds > 0:
            await asyncio.sleep(self.latency_seconds)
        if operation in self.fail_on:
            self.logger.warning("simulated_failure", operation=operation)
            return ConnectionError(f"Simulated failure in {operation}")
        return None

    def _bundle_for(self, user: str) -> JournalBundle:
        bundle = self._bundles.get(user)
        if bundle is None:
            bundle = JournalBundle.empty(self.default_medications)
            self._bundles[user] = bundle
        return bundle

    async def load_all(self, user: str) -> Result[JournalBundle]:
        if error := await self._enter("load_all"):
            return Result.err(error)
        return Result.ok(self._bundle_for(user).model_copy(deep=True))

    async def save_daily_record(self, user: str, day: str, record: DailyRecord) -> Result[None]:
        if error := await self._enter("save_daily_record"):
            return Result.err(error)
        bundle = self._bundle_for(user)
        bundle.health_data[day] = dict(record)
        return Result.ok(None)

    async def save_catalog(self, user: str, medications: list[str]) -> Result[None]:
        if error := await self._enter("save_catalog"):
            return Result.err(error)
        self._bundle_for(user).medications = list(medications)
        return Result.ok(None)

    async def save_pattern(self, user: str, pattern: StandardPattern) -> Result[None]:
        if error := await self._enter("save_pattern"):
            return Result.err(error)
        self._bundle_for(user).standard_pattern = {s: list(m) for s, m in pattern.items()}
        return Result.ok(None)

    async def replace_health_log(self, user: str, health_log: HealthLog) -> Result[None]:
        if error := await self._enter("replace_health_log"):
            return Result.err(error)
        self._bundle_for(user).health_data = {d: dict(r) for d, r in health_log.items()}
        return Result.ok(None)

    async def replace_all(self, user: str, bundle: JournalBundle) -> Result[None]:
        if error := await self._enter("replace_all"):
            return Result.err(error)
        self._bundles[user] = bundle.model_copy(deep=True)
        return Result.ok(None)

    async def login(self, username: str, password: str) -> UserSession | None:
        stored = self._passwords.get(username)
        if stored is None or not verify_password(password, stored):
            self.logger.info("login_rejected", username=username)
            return None
        token = secrets.token_urlsafe(24)
        self._sessions[token] = username
        return UserSession(username=username, token=token)

    async def logout(self, session: UserSession) -> None:
        if session.token is not None:
            self._sessions.pop(session.token, None)

    # User administration

    async def list_users(self) -> Result[list[str]]:
        if error := await self._enter("list_users"):
            return Result.err(error)
        return Result.ok(sorted(self._passwords))

    async def register_user(self, username: str, password: str) -> Result[None]:
        if error := await self._enter("register_user"):
            return Result.err(error)
        if username in self._passwords:
            return Result.err(UserExistsError(username))
        self._passwords[username] = hash_password(password)
        self.logger.info("user_registered", username=username)
        return Result.ok(None)

    async def change_password(self, username: str, password: str) -> Result[None]:
        if error := await self._enter("change_password"):
            return Result.err(error)
        if username not in self._passwords:
            return Result.err(UnknownUserError(username))
        self._passwords[username] = hash_password(password)
        return Result.ok(None)

    async def delete_user(self, username: str) -> Result[None]:
        if error := await self._enter("delete_user"):
            return Result.err(error)
        if self._passwords.pop(username, None) is None:
            return Result.err(UnknownUserError(username))
        self._bundles.pop(username, None)
        for token in [t for t, owner in self._sessions.items() if owner == username]:
            del self._sessions[token]
        self.logger.info("user_deleted", username=username)
        return Result.ok(None)

    async def aclose(self) -> None:
        self._sessions.clear()
