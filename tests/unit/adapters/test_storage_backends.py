"""
Tests for the persistence backends.

The JSON file backend runs against a temporary directory; the REST backend
runs against an ``httpx.MockTransport`` so no network is involved.
"""

import json
from collections.abc import Callable
from pathlib import Path

import httpx
import pytest

from adapters.storage import InMemoryStore, JsonFileStore, RestBackendError, RestStore, open_store
from adapters.storage.credentials import hash_password, verify_password
from healthjournal.config import AppConfig, StorageConfig
from healthjournal.domain.errors import BundleValidationError, UnknownUserError, UserExistsError
from healthjournal.domain.models import JournalBundle, TimeSlotEntry
from healthjournal.services.codec import export_bundle
from healthjournal.services.journal import JournalService


@pytest.fixture
def bundle() -> JournalBundle:
    return JournalBundle(
        health_data={
            "2024-01-01": {"08:00": TimeSlotEntry(value=5, medications=["Zinc"], comment="ok")}
        },
        medications=["Iron", "Zinc"],
        standard_pattern={"08:00": ["Zinc"]},
    )


class TestCredentials:
    def test_hash_and_verify(self) -> None:
        stored = hash_password("salud")

        assert verify_password("salud", stored)
        assert not verify_password("Salud", stored)

    def test_hash_is_salted(self) -> None:
        assert hash_password("salud") != hash_password("salud")

    def test_hash_uses_scrypt(self) -> None:
        assert hash_password("salud").startswith("scrypt$16384$8$1$")

    @pytest.mark.parametrize(
        "stored",
        ["", "nodollar", "zz$abc", "scrypt$16384$8$1$zz$00", "scrypt$3$8$1$00$00", "md5$1$2$3$4$5"],
    )
    def test_malformed_hash_never_verifies(self, stored: str) -> None:
        assert not verify_password("salud", stored)


class TestJsonFileStore:
    @pytest.fixture
    def store(self, tmp_path: Path) -> JsonFileStore:
        return JsonFileStore(tmp_path / "data", default_medications=["Paracetamol 1g"])

    async def test_new_user_gets_seed_catalog(self, store: JsonFileStore) -> None:
        result = await store.load_all("ana")

        assert result.is_ok()
        assert result.unwrap() == JournalBundle.empty(["Paracetamol 1g"])

    async def test_replace_all_then_load(self, store: JsonFileStore, bundle: JournalBundle) -> None:
        assert (await store.replace_all("ana", bundle)).is_ok()

        loaded = (await store.load_all("ana")).unwrap()

        assert loaded == bundle
        on_disk = json.loads((store.data_dir / "ana.json").read_text(encoding="utf-8"))
        assert on_disk == export_bundle(bundle)

    async def test_single_entity_writes(self, store: JsonFileStore, bundle: JournalBundle) -> None:
        await store.replace_all("ana", bundle)

        await store.save_catalog("ana", ["Iron"])
        await store.save_pattern("ana", {})
        await store.save_daily_record("ana", "2024-01-02", {"09:00": TimeSlotEntry(value=2)})

        loaded = (await store.load_all("ana")).unwrap()
        assert loaded.medications == ["Iron"]
        assert loaded.standard_pattern == {}
        assert set(loaded.health_data) == {"2024-01-01", "2024-01-02"}

    async def test_replace_health_log_drops_other_dates(
        self, store: JsonFileStore, bundle: JournalBundle
    ) -> None:
        await store.replace_all("ana", bundle)

        await store.replace_health_log("ana", {"2024-02-02": {}})

        loaded = (await store.load_all("ana")).unwrap()
        assert loaded.health_data == {"2024-02-02": {}}
        assert loaded.medications == ["Iron", "Zinc"]

    async def test_no_temporary_files_left_behind(
        self, store: JsonFileStore, bundle: JournalBundle
    ) -> None:
        await store.replace_all("ana", bundle)
        await store.save_catalog("ana", ["Zinc"])

        assert sorted(p.name for p in store.data_dir.iterdir()) == ["ana.json"]

    async def test_corrupt_document_is_reported(self, store: JsonFileStore) -> None:
        store.data_dir.mkdir(parents=True)
        (store.data_dir / "ana.json").write_text('{"healthData": {}}', encoding="utf-8")

        result = await store.load_all("ana")

        assert result.is_err()
        assert isinstance(result.unwrap_err(), BundleValidationError)

    async def test_unsafe_username_is_an_error_result(self, store: JsonFileStore) -> None:
        result = await store.save_catalog("../etc", [])

        assert result.is_err()
        assert "Unsupported username" in str(result.unwrap_err())

    async def test_login(self, store: JsonFileStore) -> None:
        (await store.register_user("ana", "salud")).unwrap()

        session = await store.login("ana", "salud")

        assert session is not None
        assert session.username == "ana"
        assert await store.login("ana", "nope") is None
        duplicate = await store.register_user("ana", "otra")
        assert isinstance(duplicate.unwrap_err(), UserExistsError)

    @pytest.mark.parametrize("first", ["credentials", "journal"])
    async def test_user_named_users_does_not_clash_with_credentials(
        self, store: JsonFileStore, first: str
    ) -> None:
        if first == "credentials":
            await store.register_user("ana", "salud")
        assert (await store.save_catalog("users", ["Zinc"])).is_ok()
        if first == "journal":
            await store.register_user("ana", "salud")

        assert (await store.load_all("users")).unwrap().medications == ["Zinc"]
        assert (await store.list_users()).unwrap() == ["ana"]
        assert await store.login("ana", "salud") is not None

    @pytest.mark.parametrize("username", ["_users", ".hidden", "ana\n", ""])
    async def test_reserved_or_unsafe_names_are_rejected(
        self, store: JsonFileStore, username: str
    ) -> None:
        assert (await store.save_catalog(username, [])).is_err()
        assert (await store.register_user(username, "salud")).is_err()

    async def test_user_administration(self, store: JsonFileStore, bundle: JournalBundle) -> None:
        await store.register_user("ana", "salud")
        await store.register_user("luis", "clave")
        await store.replace_all("luis", bundle)

        assert (await store.change_password("ana", "nueva")).is_ok()
        assert await store.login("ana", "nueva") is not None
        assert await store.login("ana", "salud") is None

        assert (await store.delete_user("luis")).is_ok()
        assert not (store.data_dir / "luis.json").exists()
        assert (await store.list_users()).unwrap() == ["ana"]
        assert isinstance((await store.delete_user("luis")).unwrap_err(), UnknownUserError)

        stored = json.loads((store.data_dir / "_users.json").read_text(encoding="utf-8"))
        assert list(stored) == ["ana"]
        assert stored["ana"].startswith("scrypt$")


def _rest_store(handler: Callable[[httpx.Request], httpx.Response]) -> RestStore:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return RestStore("https://journal.example/api/", client=client)


class TestRestStore:
    async def test_login_sets_bearer_token(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            if request.url.path == "/api/auth/login":
                body = json.loads(request.content)
                assert body == {"username": "ana", "password": "salud"}
                return httpx.Response(200, json={"token": "tok-1", "user": {"username": "ana"}})
            return httpx.Response(204)

        store = _rest_store(handler)

        session = await store.login("ana", "salud")
        result = await store.save_catalog("ana", ["Zinc"])

        assert session is not None
        assert session.token == "tok-1"
        assert result.is_ok()
        assert "Authorization" not in seen[0].headers
        assert seen[1].headers["Authorization"] == "Bearer tok-1"
        assert seen[1].method == "PUT"
        assert seen[1].url.path == "/api/medications"
        assert json.loads(seen[1].content) == {"medications": ["Zinc"]}

        await store.logout(session)
        await store.save_catalog("ana", [])
        assert "Authorization" not in seen[2].headers

    async def test_login_failure_returns_none(self) -> None:
        store = _rest_store(lambda request: httpx.Response(401, json={"message": "bad"}))

        assert await store.login("ana", "wrong") is None

    async def test_load_all_validates_payload(self, bundle: JournalBundle) -> None:
        store = _rest_store(lambda request: httpx.Response(200, json=export_bundle(bundle)))

        result = await store.load_all("ana")

        assert result.unwrap() == bundle

    async def test_load_all_rejects_malformed_payload(self) -> None:
        store = _rest_store(lambda request: httpx.Response(200, json={"healthData": {}}))

        result = await store.load_all("ana")

        assert isinstance(result.unwrap_err(), BundleValidationError)

    async def test_save_daily_record_uses_wire_format(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(201, json={"ok": True})

        store = _rest_store(handler)

        result = await store.save_daily_record(
            "ana", "2024-01-01", {"08:00": TimeSlotEntry(value=5, comment="ok")}
        )

        assert result.is_ok()
        assert seen[0].method == "POST"
        assert seen[0].url.path == "/api/data/health-data/2024-01-01"
        assert json.loads(seen[0].content) == {
            "08:00": {"value": 5, "medications": [], "comments": "ok"}
        }

    async def test_import_posts_full_bundle(self, bundle: JournalBundle) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(204)

        store = _rest_store(handler)

        assert (await store.replace_all("ana", bundle)).is_ok()
        assert seen[0].url.path == "/api/data/import"
        assert json.loads(seen[0].content) == export_bundle(bundle)

    async def test_server_error_message_is_kept(self) -> None:
        store = _rest_store(
            lambda request: httpx.Response(500, json={"message": "database unavailable"})
        )

        result = await store.save_pattern("ana", {})

        error = result.unwrap_err()
        assert isinstance(error, RestBackendError)
        assert error.status_code == 500
        assert error.message == "database unavailable"

    async def test_transport_error_is_an_error_result(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        store = _rest_store(handler)

        result = await store.replace_health_log("ana", {})

        assert isinstance(result.unwrap_err(), httpx.ConnectError)

    async def test_user_administration_endpoints(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            if request.method == "GET":
                return httpx.Response(200, json=["luis", "ana"])
            return httpx.Response(204)

        store = _rest_store(handler)

        assert (await store.list_users()).unwrap() == ["ana", "luis"]
        assert (await store.register_user("eva", "salud")).is_ok()
        assert (await store.change_password("eva maría", "nueva")).is_ok()
        assert (await store.delete_user("eva")).is_ok()

        assert [(r.method, r.url.raw_path.decode()) for r in seen] == [
            ("GET", "/api/users"),
            ("POST", "/api/auth/register"),
            ("PUT", "/api/users/eva%20mar%C3%ADa/password"),
            ("DELETE", "/api/users/eva"),
        ]
        assert json.loads(seen[1].content) == {"username": "eva", "password": "salud"}
        assert json.loads(seen[2].content) == {"password": "nueva"}

    @pytest.mark.parametrize(
        "status,error_type", [(409, UserExistsError), (404, UnknownUserError)]
    )
    async def test_user_errors_map_to_domain_errors(
        self, status: int, error_type: type[Exception]
    ) -> None:
        store = _rest_store(lambda request: httpx.Response(status, json={"message": "no"}))

        if error_type is UserExistsError:
            result = await store.register_user("ana", "salud")
        else:
            result = await store.delete_user("ana")

        assert isinstance(result.unwrap_err(), error_type)

    async def test_closing_the_journal_closes_the_http_client(self) -> None:
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(204)))
        store = RestStore("https://journal.example/api", client=client)
        service = JournalService(store, "ana")

        await service.close()

        assert client.is_closed


class TestOpenStore:
    def test_selects_backend_from_config(self, tmp_path: Path) -> None:
        memory = open_store(AppConfig(storage=StorageConfig(backend="memory")))
        files = open_store(AppConfig(storage=StorageConfig(backend="json_file", data_dir=tmp_path)))
        rest = open_store(
            AppConfig(storage=StorageConfig(backend="rest", api_base_url="https://x.example/api"))
        )

        assert isinstance(memory, InMemoryStore)
        assert isinstance(files, JsonFileStore)
        assert files.data_dir == tmp_path
        assert isinstance(rest, RestStore)
        assert rest.base_url == "https://x.example/api"

    def test_seed_catalog_comes_from_config(self) -> None:
        store = open_store(AppConfig(storage=StorageConfig(backend="memory")))

        assert isinstance(store, InMemoryStore)
        assert store.default_medications == ["Paracetamol 1g", "Ibuprofeno 600mg"]
