"""Telegram message handlers feeding the inbound orchestrator."""

from __future__ import annotations

from aiogram import F, Router
from aiogram.enums import ChatType
from aiogram.types import Message
from sqlalchemy.ext.asyncio import AsyncSession

from app.bot.utils.events import to_inbound_event
from app.bot.utils.telegram import answer_with_retry
from app.logging import logger
from app.services.orchestrator import InboundOrchestrator

router = Router()


@router.message(F.chat.type == ChatType.PRIVATE)
async def handle_private_message(
    message: Message,
    session: AsyncSession,
    orchestrator: InboundOrchestrator,
) -> None:
    event = to_inbound_event(message)
    logger.info(
        "inbound_message",
        sender=event.sender,
        message_id=message.message_id,
        attachments=len(event.attachments),
    )
    await orchestrator.handle(session, event)


@router.message()
async def handle_shared_chat_message(message: Message, orchestrator: InboundOrchestrator) -> None:
    logger.info("inbound_non_private_ignored", chat_id=message.chat.id, chat_type=message.chat.type)
    await answer_with_retry(
        message,
        orchestrator.i18n.gettext("chat.private_only"),
        parse_mode=None,
    )


__all__ = ["router"]
