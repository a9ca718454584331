"""Pytest configuration for Pastely API tests."""
import os
import tempfile
from pathlib import Path

# 설정은 app 모듈 import 시점에 읽히므로 가장 먼저 환경변수를 지정
_TMP_DIR = Path(tempfile.mkdtemp(prefix="pastely-tests-"))
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_TMP_DIR / 'test.db'}"
os.environ["LOG_DIR"] = str(_TMP_DIR / "logs")
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["ADMIN_API_TOKEN"] = "test-admin-token"
os.environ["SITE_URL"] = "https://pastely.test"
os.environ["ENVIRONMENT"] = "DEV"

from typing import Dict  # noqa: E402

import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402

from app.config import get_settings  # noqa: E402
from app.database import Base, async_session_maker, engine, get_db_context  # noqa: E402
from app.exceptions import StorageError  # noqa: E402
from app.services.api_key import ApiKeyService  # noqa: E402
from app.utils.background import drain  # noqa: E402

ADMIN_TOKEN = "test-admin-token"


class FakeStorage:
    """In-memory stand-in for ObjectStorageService."""

    def __init__(self):
        self.blobs: Dict[str, bytes] = {}
        self.content_types: Dict[str, str] = {}
        self.deleted = []

    async def upload_file(self, file_content: bytes, object_name: str, content_type: str) -> str:
        self.blobs[object_name] = file_content
        self.content_types[object_name] = content_type
        return object_name

    async def download_file(self, object_name: str) -> bytes:
        if object_name not in self.blobs:
            raise StorageError("File download failed")
        return self.blobs[object_name]

    async def delete_file(self, object_name: str) -> bool:
        self.deleted.append(object_name)
        self.blobs.pop(object_name, None)
        return True


@pytest.fixture
def settings():
    return get_settings()


@pytest.fixture
async def database():
    """Fresh tables for every test."""
    import app.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield
    # burn/삭제 후 예약된 blob 삭제, 쿼터 정리 마무리
    await drain()


@pytest.fixture
async def db_session(database):
    async with async_session_maker() as session:
        yield session


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
async def client(database, storage):
    """HTTP client against the ASGI app with in-memory storage."""
    from app.dependencies.auth import get_storage
    from app.main import app

    app.dependency_overrides[get_storage] = lambda: storage
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


async def issue_api_key(user_id: str) -> str:
    """Issue a key directly through the service; returns the plaintext."""
    async with get_db_context() as session:
        _, plaintext = await ApiKeyService(session).issue_key(user_id)
    return plaintext


@pytest.fixture
async def api_key(database):
    return await issue_api_key("user-1")


@pytest.fixture
def auth_headers(api_key):
    return {"Authorization": f"Bearer {api_key}"}


@pytest.fixture
def admin_headers():
    return {"X-Admin-Token": ADMIN_TOKEN}
