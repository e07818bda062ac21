from __future__ import annotations

import pathlib
import sys
from contextlib import ExitStack
from typing import Callable, Iterator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

ROOT_DIR = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from permits_api.config import Settings
from permits_api.db.session import Database
from permits_api.main import create_app
from permits_api.services.storage import FilesystemBlobStore


def make_settings(tmp_path: pathlib.Path, **overrides) -> Settings:
    values = {
        "environment": "test",
        "database_url": f"sqlite:///{tmp_path / 'permits.db'}",
        "database_auto_create": True,
        "upload_dir": tmp_path / "uploads",
        "blob_storage": "filesystem",
        "metrics_enabled": False,
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture()
def settings(tmp_path: pathlib.Path) -> Settings:
    return make_settings(tmp_path)


@pytest.fixture()
def database(settings: Settings) -> Iterator[Database]:
    """Connected database with the schema created, disposed after the test."""
    db = Database(settings.database_url).connect()
    db.create_all()
    try:
        yield db
    finally:
        db.dispose()


@pytest.fixture()
def db_session(database: Database) -> Iterator[Session]:
    session = database.new_session()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def blob_store(settings: Settings) -> FilesystemBlobStore:
    return FilesystemBlobStore(settings.upload_dir)


@pytest.fixture()
def app(settings: Settings, database: Database):
    return create_app(settings, database)


@pytest.fixture()
def client(app) -> Iterator[TestClient]:
    """Provide a FastAPI TestClient instance."""
    with TestClient(app) as _client:
        yield _client


@pytest.fixture()
def client_factory(tmp_path: pathlib.Path) -> Iterator[Callable[..., TestClient]]:
    """Build clients for alternative deployments (blob backend, limits)."""
    with ExitStack() as stack:

        def _factory(**overrides) -> TestClient:
            app = create_app(make_settings(tmp_path, **overrides))
            return stack.enter_context(TestClient(app))

        yield _factory


@pytest.fixture()
def jane_doe() -> dict[str, str]:
    return {"fullName": "Jane Doe", "passportNumber": "P1234567"}
