"""Shared fixtures: a controllable clock, both backends, and a wired app."""

from pathlib import Path
from typing import Iterator

import pytest

from acpanel.app import create_app, shutdown
from acpanel.cache import EntityCache
from acpanel.claims import ClaimService
from acpanel.config import BootstrapSettings, Settings, StorageSettings, WebSettings
from acpanel.datastore import DataStore
from acpanel.mail import LoggingMailer
from acpanel.storage import FileBackend, SqlBackend, StorageFacade
from acpanel.verification import VerificationCodeService

from .helpers import FakeClock


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def file_storage(tmp_path: Path) -> StorageFacade:
    return StorageFacade(FileBackend(tmp_path / "data"))


@pytest.fixture
def sql_storage(tmp_path: Path) -> Iterator[StorageFacade]:
    storage = StorageFacade(SqlBackend(f"sqlite:///{tmp_path / 'panel.db'}"))
    yield storage
    storage.close()


@pytest.fixture(params=["file", "sql"])
def storage(request: pytest.FixtureRequest) -> StorageFacade:
    return request.getfixturevalue(f"{request.param}_storage")


@pytest.fixture
def cache(file_storage: StorageFacade, clock: FakeClock) -> EntityCache:
    cache = EntityCache(file_storage, clock)
    cache.load()
    return cache


@pytest.fixture
def codes(cache: EntityCache) -> VerificationCodeService:
    return VerificationCodeService(cache)


@pytest.fixture
def datastore(cache: EntityCache, codes: VerificationCodeService) -> DataStore:
    return DataStore(cache, codes)


@pytest.fixture
def claims(cache: EntityCache) -> ClaimService:
    return ClaimService(cache)


@pytest.fixture
def mailer() -> LoggingMailer:
    return LoggingMailer()


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        storage=StorageSettings(kind="file", data_dir=tmp_path / "data"),
        bootstrap=BootstrapSettings(username="admin", password="secret123"),
        web=WebSettings(secret_key="test-secret", token_ttl=3600),
        sweep_interval=0,
    )


@pytest.fixture
def app(settings: Settings, mailer: LoggingMailer, clock: FakeClock):
    app = create_app(settings, mailer=mailer, clock=clock)
    app.config["TESTING"] = True
    yield app
    shutdown(app)


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def admin_headers(client) -> dict:
    response = client.post("/api/login", json={"username": "admin", "password": "secret123"})
    assert response.status_code == 200
    return {"Authorization": f"Bearer {response.get_json()['token']}"}
