"""
REST persistence backend.

Talks to the journal's HTTP API with ``httpx``. Login stores a bearer token
that is sent with every later request. The server replaces all entities of
an import in one request, so imports are atomic from the client's side.

Endpoints:
    POST /auth/login                 {username, password} -> {token, user}
    GET  /data                       -> bundle
    POST /data/health-data/{date}    daily record
    PUT  /data/health-data           full health log
    PUT  /medications                {medications: [...]}
    POST /data/standard-pattern      pattern
    POST /data/import                bundle
    GET  /users                      -> [username]
    POST /auth/register              {username, password}
    PUT  /users/{username}/password  {password}
    DELETE /users/{username}
"""

from typing import Any
from urllib.parse import quote

import httpx
import structlog

from healthjournal.domain.errors import BundleValidationError, UnknownUserError, UserExistsError
from healthjournal.domain.models import (
    DailyRecord,
    HealthLog,
    JournalBundle,
    StandardPattern,
    UserSession,
)
from healthjournal.services.codec import export_bundle, validate_bundle
from healthjournal.services.persistence import Result

logger = structlog.get_logger(__name__)


class RestBackendError(Exception):
    """The API answered with an error status."""

    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(f"HTTP {status_code}: {message}")
        self.status_code = status_code
        self.message = message


def _record_payload(record: DailyRecord) -> dict[str, Any]:
    return {slot: entry.model_dump(mode="json", by_alias=True) for slot, entry in record.items()}


def _health_log_payload(health_log: HealthLog) -> dict[str, Any]:
    return {day: _record_payload(record) for day, record in health_log.items()}


class RestStore:
    """Persistence port backed by the journal's REST API."""

    backend_name = "rest"
    supports_atomic_import = True

    def __init__(
        self,
        base_url: str,
        *,
        timeout_seconds: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(base_url=self.base_url, timeout=timeout_seconds)
        self._token: str | None = None
        self.logger = logger.bind(backend=self.backend_name, base_url=self.base_url)

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    async def _request(self, method: str, path: str, payload: Any = None) -> Any:
        """Send one request; raise ``RestBackendError`` or ``httpx.HTTPError`` on failure."""
        response = await self._client.request(
            method, f"{self.base_url}{path}", json=payload, headers=self._headers()
        )
        if response.is_error:
            try:
                message = response.json().get("message") or response.reason_phrase
            except ValueError:
                message = response.reason_phrase
            raise RestBackendError(response.status_code, message)
        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    async def _write(self, operation: str, method: str, path: str, payload: Any) -> Result[None]:
        try:
            await self._request(method, path, payload)
        except (httpx.HTTPError, RestBackendError) as e:
            self.logger.error("request_failed", operation=operation, error=str(e))
            return Result.err(e)
        return Result.ok(None)

    async def load_all(self, user: str) -> Result[JournalBundle]:
        try:
            raw = await self._request("GET", "/data")
            return Result.ok(validate_bundle(raw))
        except BundleValidationError as e:
            self.logger.error("server_bundle_invalid", user=user, problems=e.problems)
            return Result.err(e)
        except (httpx.HTTPError, RestBackendError) as e:
            self.logger.error("request_failed", operation="load_all", user=user, error=str(e))
            return Result.err(e)

    async def save_daily_record(self, user: str, day: str, record: DailyRecord) -> Result[None]:
        return await self._write(
            "save_daily_record", "POST", f"/data/health-data/{day}", _record_payload(record)
        )

    async def save_catalog(self, user: str, medications: list[str]) -> Result[None]:
        return await self._write(
            "save_catalog", "PUT", "/medications", {"medications": list(medications)}
        )

    async def save_pattern(self, user: str, pattern: StandardPattern) -> Result[None]:
        return await self._write("save_pattern", "POST", "/data/standard-pattern", dict(pattern))

    async def replace_health_log(self, user: str, health_log: HealthLog) -> Result[None]:
        return await self._write(
            "replace_health_log", "PUT", "/data/health-data", _health_log_payload(health_log)
        )

    async def replace_all(self, user: str, bundle: JournalBundle) -> Result[None]:
        return await self._write("replace_all", "POST", "/data/import", export_bundle(bundle))

    async def login(self, username: str, password: str) -> UserSession | None:
        try:
            data = await self._request(
                "POST", "/auth/login", {"username": username, "password": password}
            )
        except (httpx.HTTPError, RestBackendError) as e:
            self.logger.warning("login_failed", username=username, error=str(e))
            return None
        if not data or not data.get("token"):
            return None
        self._token = data["token"]
        user = data.get("user") or {}
        return UserSession(username=user.get("username", username), token=self._token)

    async def logout(self, session: UserSession) -> None:
        self._token = None


    # User administration

    async def list_users(self) -> Result[list[str]]:
        try:
            data = await self._request("GET", "/users")
        except (httpx.HTTPError, RestBackendError) as e:
            self.logger.error("request_failed", operation="list_users", error=str(e))
            return Result.err(e)
        return Result.ok(sorted(data or []))

    async def _user_write(
        self, operation: str, username: str, method: str, path: str, payload: Any = None
    ) -> Result[None]:
        result = await self._write(operation, method, path, payload)
        if result.is_ok():
            return result
        error = result.unwrap_err()
        if isinstance(error, RestBackendError):
            if error.status_code == 409:
                return Result.err(UserExistsError(username))
            if error.status_code == 404:
                return Result.err(UnknownUserError(username))
        return result

    async def register_user(self, username: str, password: str) -> Result[None]:
        return await self._user_write(
            "register_user",
            username,
            "POST",
            "/auth/register",
            {"username": username, "password": password},
        )

    async def change_password(self, username: str, password: str) -> Result[None]:
        return await self._user_write(
            "change_password",
            username,
            "PUT",
            f"/users/{quote(username, safe='')}/password",
            {"password": password},
        )

    async def delete_user(self, username: str) -> Result[None]:
        return await self._user_write(
            "delete_user", username, "DELETE", f"/users/{quote(username, safe='')}"
        )

    async def aclose(self) -> None:
        await self._client.aclose()
