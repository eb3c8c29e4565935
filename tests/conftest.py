"""
Shared fixtures.

Provides:
- a temporary uploads root
- an in-memory SQLite owner database with one user
- local and failing storage providers
- a TestClient factory wired to those collaborators
"""
import uuid
from datetime import datetime, timezone
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from upload_hub.db import Base
from upload_hub.errors import StorageError
from upload_hub.main import create_app
from upload_hub.models.models import User
from upload_hub.routes.uploads import get_upload_service
from upload_hub.services.commit import CommitPipeline
from upload_hub.services.owners import OwnerDirectory
from upload_hub.services.progress import UploadProgressTracker
from upload_hub.services.uploads import UploadService
from upload_hub.storage.local_provider import LocalStorageProvider


EXPIRES = datetime(2099, 12, 31, tzinfo=timezone.utc)


class CountingStorage(LocalStorageProvider):
    def __init__(self, base_dir):
        super().__init__(base_dir)
        self.puts = []

    def put_object(self, key, data, *, public_read, expires):
        self.puts.append(key)
        super().put_object(key, data, public_read=public_read, expires=expires)


class FailingStorage(LocalStorageProvider):
    def __init__(self, base_dir):
        super().__init__(base_dir)
        self.puts = []

    def put_object(self, key, data, *, public_read, expires):
        self.puts.append(key)
        raise StorageError("connection reset by peer")


class FlakyStorage(CountingStorage):
    def __init__(self, base_dir, failures=1):
        super().__init__(base_dir)
        self.failures = failures

    def put_object(self, key, data, *, public_read, expires):
        if self.failures:
            self.failures -= 1
            self.puts.append(key)
            raise StorageError("timed out")
        super().put_object(key, data, public_read=public_read, expires=expires)


@pytest.fixture
def uploads_root(tmp_path) -> Path:
    root = tmp_path / "uploads"
    root.mkdir()
    return root


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(bind=engine, autoflush=False, autocommit=False)
    yield factory
    engine.dispose()


@pytest.fixture
def owner_id(session_factory) -> str:
    with session_factory() as db:
        user = User(
            id=uuid.uuid4(),
            username="Ada Lovelace",
            email="ada@example.com",
            first_name="Ada",
            last_name="Lovelace",
        )
        db.add(user)
        db.commit()
        return str(user.id)


@pytest.fixture
def owners(session_factory) -> OwnerDirectory:
    return OwnerDirectory(session_factory)


@pytest.fixture
def storage(tmp_path) -> CountingStorage:
    return CountingStorage(tmp_path / "objects")


@pytest.fixture
def make_service(uploads_root, owners, storage):
    def _make(storage_provider=None, max_file_size=0):
        commit = CommitPipeline(storage_provider or storage, owners, EXPIRES)
        return UploadService(
            uploads_root=uploads_root,
            tracker=UploadProgressTracker(),
            commit=commit,
            max_file_size=max_file_size,
        )

    return _make


@pytest.fixture
def make_client(make_service):
    def _make(storage_provider=None, max_file_size=0):
        service = make_service(storage_provider, max_file_size)
        app = create_app()
        app.dependency_overrides[get_upload_service] = lambda: service
        return TestClient(app)

    return _make


@pytest.fixture
def client(make_client):
    return make_client()


@pytest.fixture
def load_user(session_factory):
    def _load(owner_id: str) -> User:
        with session_factory() as db:
            return db.get(User, uuid.UUID(owner_id))

    return _load
