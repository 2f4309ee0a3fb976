"""Tests for the Telegram handlers in front of the orchestrator."""

from __future__ import annotations

from datetime import datetime, timezone
from types import SimpleNamespace

import pytest
from aiogram.types import Chat, Document, Message

from app.bot.routers.inbound import handle_private_message, handle_shared_chat_message


class RecordingOrchestrator:
    def __init__(self, i18n) -> None:
        self.i18n = i18n
        self.calls = []

    async def handle(self, session, event) -> None:
        self.calls.append((session, event))


class DummyMessage:
    def __init__(self, chat_type: str = "group") -> None:
        self.chat = SimpleNamespace(id=-100, type=chat_type)
        self.answers: list[tuple[str, str | None]] = []

    async def answer(self, text: str, parse_mode: str | None = None):
        self.answers.append((text, parse_mode))
        return text


@pytest.mark.asyncio
async def test_private_message_is_forwarded_as_event(i18n):
    orchestrator = RecordingOrchestrator(i18n)
    session = object()
    message = Message(
        message_id=9,
        date=datetime.now(timezone.utc),
        chat=Chat(id=555, type="private"),
        document=Document(file_id="doc", file_unique_id="d", mime_type="text/plain"),
    )

    await handle_private_message(message, session, orchestrator)

    ((passed_session, event),) = orchestrator.calls
    assert passed_session is session
    assert event.sender == "555"
    assert event.attachments[0].locator == "doc"


@pytest.mark.asyncio
async def test_group_message_gets_private_only_reply(i18n):
    orchestrator = RecordingOrchestrator(i18n)
    message = DummyMessage()

    await handle_shared_chat_message(message, orchestrator)

    assert orchestrator.calls == []
    assert message.answers == [(i18n.gettext("chat.private_only"), None)]
