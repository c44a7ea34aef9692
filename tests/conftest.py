"""Pytest configuration and shared fixtures."""

import itertools
from collections.abc import AsyncIterator
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from src.core import db_client
from src.core.config import settings
from src.main import app
from src.models.service_models import UploadedBlob


@pytest.fixture
async def sqlite_db(tmp_path, monkeypatch) -> AsyncIterator[str]:
    """Fresh SQLite database file with the schema applied."""
    db_path = str(tmp_path / "treeadopt_test.db")
    monkeypatch.setattr(settings, "sqlite_db_path", db_path)

    await db_client.init_db()
    yield db_path
    await db_client.close_connection()


@pytest.fixture
def blob_storage(monkeypatch) -> SimpleNamespace:
    """Replace the blob storage collaborator with recording mocks."""
    counter = itertools.count(1)

    async def fake_upload(*, image, caption="", **_kwargs) -> UploadedBlob:
        n = next(counter)
        return UploadedBlob(url=f"https://blobs.test/trees/{n}.jpg", external_id=f"blob-{n}")

    upload = AsyncMock(side_effect=fake_upload)
    delete = AsyncMock(return_value=True)
    monkeypatch.setattr("src.interface.blob_storage.upload_image", upload)
    monkeypatch.setattr("src.interface.blob_storage.delete_image", delete)
    return SimpleNamespace(upload=upload, delete=delete)


@pytest.fixture
def client() -> TestClient:
    """Test client for the FastAPI app; lifespan (scheduler, logfire) is not started."""
    return TestClient(app)
