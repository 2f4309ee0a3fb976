"""Shared pytest fixtures for database-backed service tests."""

from __future__ import annotations

import pytest
import pytest_asyncio
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.config import GatewaySettings
from app.db.base import Base
from app.db.models import core  # noqa: F401
from app.i18n import get_i18n
from app.services.exceptions import DownloadFailed, ObjectNotFound, StoreUnavailable
from app.utils.locks import KeyedLock


class _AsyncSessionWrapper:
    def __init__(self, sync_session) -> None:
        self._sync = sync_session

    async def execute(self, *args, **kwargs):
        return self._sync.execute(*args, **kwargs)

    async def scalars(self, *args, **kwargs):
        return self._sync.scalars(*args, **kwargs)

    async def get(self, *args, **kwargs):
        return self._sync.get(*args, **kwargs)

    def add(self, obj) -> None:
        self._sync.add(obj)

    def add_all(self, objs) -> None:
        self._sync.add_all(objs)

    async def delete(self, obj) -> None:
        self._sync.delete(obj)

    async def flush(self) -> None:
        self._sync.flush()

    async def commit(self) -> None:
        self._sync.commit()

    async def rollback(self) -> None:
        self._sync.rollback()

    async def close(self) -> None:
        self._sync.close()


@pytest_asyncio.fixture
async def session():
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, expire_on_commit=False)
    sync_session = SessionLocal()
    try:
        yield _AsyncSessionWrapper(sync_session)
    finally:
        sync_session.close()
        engine.dispose()


@pytest.fixture
def gateway_settings() -> GatewaySettings:
    return GatewaySettings(telegram_token="123456:test-token", _env_file=None)


@pytest.fixture
def i18n():
    return get_i18n("en")


@pytest.fixture
def locks() -> KeyedLock:
    return KeyedLock()


class FakeObjectStore:
    """In-memory stand-in for the S3 gateway."""

    def __init__(self) -> None:
        self.objects: dict[str, bytes] = {}
        self.content_types: dict[str, str] = {}
        self.fail_uploads = False
        self.fail_prefix_delete = False
        self.deleted_keys: list[str] = []

    async def upload(self, key, data, mime_type, *, checksum=None) -> None:
        if self.fail_uploads:
            raise StoreUnavailable("store offline")
        self.objects[key] = data
        self.content_types[key] = mime_type

    async def delete(self, key) -> None:
        self.deleted_keys.append(key)
        self.objects.pop(key, None)

    async def presigned_url(self, key) -> str:
        if key not in self.objects:
            raise ObjectNotFound(key)
        return f"https://store.test/{key}?signature=abc"

    async def delete_prefix(self, prefix) -> int:
        if self.fail_prefix_delete:
            raise StoreUnavailable("list failed")
        keys = [key for key in self.objects if key.startswith(prefix)]
        for key in keys:
            del self.objects[key]
        return len(keys)


class FakeDownloader:
    def __init__(self, payloads: dict[str, bytes | Exception] | None = None) -> None:
        self.payloads = payloads or {}
        self.requested: list[str] = []

    async def download(self, locator: str) -> bytes:
        self.requested.append(locator)
        payload = self.payloads.get(locator)
        if payload is None:
            raise DownloadFailed(f"unknown locator {locator}")
        if isinstance(payload, Exception):
            raise payload
        return payload


class RecordingSender:
    def __init__(self) -> None:
        self.texts: list[tuple[str, str]] = []
        self.media: list[tuple[str, str, str]] = []

    async def send_text(self, address: str, body: str) -> None:
        self.texts.append((address, body))

    async def send_media(self, address: str, url: str, caption: str) -> None:
        self.media.append((address, url, caption))

    def bodies(self) -> list[str]:
        return [body for _, body in self.texts]


@pytest.fixture
def store() -> FakeObjectStore:
    return FakeObjectStore()


@pytest.fixture
def downloader() -> FakeDownloader:
    return FakeDownloader()


@pytest.fixture
def sender() -> RecordingSender:
    return RecordingSender()
