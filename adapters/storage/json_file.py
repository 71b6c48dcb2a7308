"""
Local JSON file persistence backend.

One document per user (``<data_dir>/<user>.json``) in the export format, plus
``_users.json`` with scrypt password hashes. Every write rewrites the user's
document through a temporary file and ``os.replace``, so a crash never leaves
a half-written document behind and ``replace_all`` is atomic.
"""

import asyncio
import json
import os
import re
import secrets
import tempfile
from collections.abc import Callable
from pathlib import Path
from typing import Any

import structlog

from adapters.storage.credentials import hash_password, verify_password
from healthjournal.domain.errors import BundleValidationError, UnknownUserError, UserExistsError
from healthjournal.domain.models import (
    DailyRecord,
    HealthLog,
    JournalBundle,
    StandardPattern,
    UserSession,
)
from healthjournal.services.codec import parse_json, to_json
from healthjournal.services.persistence import Result

logger = structlog.get_logger(__name__)

# Usernames start with a letter or digit, so no journal document can be named
# like the credentials file
_SAFE_USERNAME = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]{0,63}$")
USERS_FILE = "_users.json"


def _atomic_write(path: Path, text: str) -> None:
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(text)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


class JsonFileStore:
    """Persistence port storing each user's bundle as a JSON document."""

    backend_name = "json_file"
    supports_atomic_import = True

    def __init__(self, data_dir: Path, *, default_medications: list[str] | None = None) -> None:
        self.data_dir = Path(data_dir)
        self.default_medications = list(default_medications or [])
        self._lock = asyncio.Lock()
        self.logger = logger.bind(backend=self.backend_name, data_dir=str(self.data_dir))

    def _user_path(self, user: str) -> Path:
        if not _SAFE_USERNAME.fullmatch(user):
            raise ValueError(f"Unsupported username for file storage: {user!r}")
        return self.data_dir / f"{user}.json"

    def _read_bundle(self, user: str) -> JournalBundle:
        path = self._user_path(user)
        if not path.exists():
            return JournalBundle.empty(self.default_medications)
        return parse_json(path.read_text(encoding="utf-8"))

    def _write_bundle(self, user: str, bundle: JournalBundle) -> None:
        self.data_dir.mkdir(parents=True, exist_ok=True)
        _atomic_write(self._user_path(user), to_json(bundle) + "\n")

    async def _update(
        self, user: str, operation: str, changes: Callable[[JournalBundle], dict[str, Any]]
    ) -> Result[None]:
        """Read-modify-write of one user's document under the store lock."""
        async with self._lock:
            try:
                bundle = await asyncio.to_thread(self._read_bundle, user)
                updated = bundle.model_copy(update=changes(bundle))
                await asyncio.to_thread(self._write_bundle, user, updated)
            except (OSError, ValueError) as e:
                self.logger.error("write_failed", operation=operation, user=user, error=str(e))
                return Result.err(e)
        self.logger.debug("write_completed", operation=operation, user=user)
        return Result.ok(None)

    async def load_all(self, user: str) -> Result[JournalBundle]:
        try:
            bundle = await asyncio.to_thread(self._read_bundle, user)
        except BundleValidationError as e:
            self.logger.error("stored_bundle_invalid", user=user, problems=e.problems)
            return Result.err(e)
        except (OSError, ValueError) as e:
            self.logger.error("load_failed", user=user, error=str(e))
            return Result.err(e)
        return Result.ok(bundle)

    async def save_daily_record(self, user: str, day: str, record: DailyRecord) -> Result[None]:
        return await self._update(
            user,
            "save_daily_record",
            lambda bundle: {"health_data": {**bundle.health_data, day: dict(record)}},
        )

    async def save_catalog(self, user: str, medications: list[str]) -> Result[None]:
        return await self._update(
            user, "save_catalog", lambda _: {"medications": list(medications)}
        )

    async def save_pattern(self, user: str, pattern: StandardPattern) -> Result[None]:
        return await self._update(
            user, "save_pattern", lambda _: {"standard_pattern": dict(pattern)}
        )

    async def replace_health_log(self, user: str, health_log: HealthLog) -> Result[None]:
        return await self._update(
            user, "replace_health_log", lambda _: {"health_data": dict(health_log)}
        )

    async def replace_all(self, user: str, bundle: JournalBundle) -> Result[None]:
        async with self._lock:
            try:
                await asyncio.to_thread(self._write_bundle, user, bundle)
            except (OSError, ValueError) as e:
                self.logger.error("write_failed", operation="replace_all", error=str(e))
                return Result.err(e)
        self.logger.info("bundle_replaced", user=user)
        return Result.ok(None)

    # Credentials

    def _read_users(self) -> dict[str, str]:
        path = self.data_dir / USERS_FILE
        if not path.exists():
            return {}
        return json.loads(path.read_text(encoding="utf-8"))

    def _write_users(self, users: dict[str, str]) -> None:
        self.data_dir.mkdir(parents=True, exist_ok=True)
        _atomic_write(self.data_dir / USERS_FILE, json.dumps(users, indent=2, sort_keys=True))

    async def _update_users(
        self, username: str, operation: str, change: Callable[[dict[str, str]], None]
    ) -> Result[None]:
        """Read-modify-write of the credentials file; ``change`` may raise a domain error."""
        async with self._lock:
            try:
                self._user_path(username)
                users = await asyncio.to_thread(self._read_users)
                change(users)
                await asyncio.to_thread(self._write_users, users)
            except (UserExistsError, UnknownUserError) as e:
                self.logger.info("user_change_rejected", operation=operation, error=str(e))
                return Result.err(e)
            except (OSError, ValueError) as e:
                self.logger.error("write_failed", operation=operation, error=str(e))
                return Result.err(e)
        self.logger.info("user_changed", operation=operation, username=username)
        return Result.ok(None)

    async def list_users(self) -> Result[list[str]]:
        try:
            users = await asyncio.to_thread(self._read_users)
        except (OSError, ValueError) as e:
            self.logger.error("load_failed", operation="list_users", error=str(e))
            return Result.err(e)
        return Result.ok(sorted(users))

    async def register_user(self, username: str, password: str) -> Result[None]:
        def add(users: dict[str, str]) -> None:
            if username in users:
                raise UserExistsError(username)
            users[username] = hash_password(password)

        return await self._update_users(username, "register_user", add)

    async def change_password(self, username: str, password: str) -> Result[None]:
        def replace(users: dict[str, str]) -> None:
            if username not in users:
                raise UnknownUserError(username)
            users[username] = hash_password(password)

        return await self._update_users(username, "change_password", replace)

    async def delete_user(self, username: str) -> Result[None]:
        def remove(users: dict[str, str]) -> None:
            if users.pop(username, None) is None:
                raise UnknownUserError(username)
            self._user_path(username).unlink(missing_ok=True)

        return await self._update_users(username, "delete_user", remove)

    async def login(self, username: str, password: str) -> UserSession | None:
        users = await asyncio.to_thread(self._read_users)
        stored = users.get(username)
        if stored is None or not verify_password(password, stored):
            self.logger.info("login_rejected", username=username)
            return None
        return UserSession(username=username, token=secrets.token_urlsafe(24))

    async def logout(self, session: UserSession) -> None:
        self.logger.debug("logout", username=session.username)

    async def aclose(self) -> None:
        self.logger.debug("store_closed")
