"""Tests for DbSessionMiddleware and the Database wrapper."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest
import structlog
from aiogram.types import Chat, Message, Update
from sqlalchemy import select

from app.config import GatewaySettings
from app.bot.middlewares.db_session import DbSessionMiddleware
from app.db.models.core import Account
from app.db.session import Database


class RecordingSession:
    def __init__(self) -> None:
        self.commits = 0
        self.rollbacks = 0

    async def commit(self) -> None:
        self.commits += 1

    async def rollback(self) -> None:
        self.rollbacks += 1


class DummyDatabase:
    def __init__(self, session):
        self._session = session

    def session(self):
        class _Wrapper:
            def __init__(self, session):
                self.session = session

            async def __aenter__(self):
                return self.session

            async def __aexit__(self, exc_type, exc, tb):
                pass

        return _Wrapper(self._session)


def _update() -> Update:
    message = Message(
        message_id=1,
        date=datetime.now(timezone.utc),
        chat=Chat(id=1, type="private"),
        text="storage",
    )
    return Update(update_id=4242, message=message)


@pytest.mark.asyncio
async def test_db_session_middleware_commits_and_binds_update_id():
    session = RecordingSession()
    middleware = DbSessionMiddleware(DummyDatabase(session))
    seen = {}

    async def handler(event, data):
        assert data["session"] is session
        seen["context"] = structlog.contextvars.get_contextvars()
        return "ok"

    result = await middleware(handler, _update(), {})

    assert result == "ok"
    assert session.commits == 1
    assert session.rollbacks == 0
    assert seen["context"]["update_id"] == 4242
    assert "update_id" not in structlog.contextvars.get_contextvars()


@pytest.mark.asyncio
async def test_db_session_middleware_rolls_back():
    session = RecordingSession()
    middleware = DbSessionMiddleware(DummyDatabase(session))

    async def handler(event, data):
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError):
        await middleware(handler, object(), {})
    assert session.commits == 0
    assert session.rollbacks == 1


@pytest.mark.asyncio
async def test_database_creates_schema_and_opens_sessions(tmp_path):
    settings = GatewaySettings(
        telegram_token="123456:test-token",
        database={"dsn": f"sqlite+aiosqlite:///{tmp_path / 'gateway.db'}", "create_schema": True},
        _env_file=None,
    )
    database = Database(settings)
    try:
        await database.create_schema()
        async with database.session() as session:
            session.add(Account(address="1", storage_limit_bytes=100))
            await session.commit()
        async with database.session() as session:
            account = (await session.execute(select(Account))).scalar_one()
        assert account.address == "1"
    finally:
        await database.dispose()
