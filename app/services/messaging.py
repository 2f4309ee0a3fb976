"""Outbound replies to chat addresses."""

from __future__ import annotations

from typing import Protocol

from aiogram import Bot

from app.bot.utils.telegram import bot_send_document_with_retry, bot_send_with_retry
from app.logging import logger


class MessageSender(Protocol):
    async def send_text(self, address: str, body: str) -> None: ...

    async def send_media(self, address: str, url: str, caption: str) -> None: ...


class TelegramMessenger:
    """Fire-and-forget sender: failures are logged, never raised to the caller."""

    __slots__ = ("bot",)

    def __init__(self, bot: Bot) -> None:
        self.bot = bot

    async def send_text(self, address: str, body: str) -> None:
        try:
            await bot_send_with_retry(self.bot, chat_id=int(address), text=body, parse_mode=None)
        except Exception as exc:
            logger.error("send_text_failed", address=address, error=str(exc))

    async def send_media(self, address: str, url: str, caption: str) -> None:
        try:
            await bot_send_document_with_retry(
                self.bot,
                chat_id=int(address),
                document=url,
                caption=caption,
                parse_mode=None,
            )
        except Exception as exc:
            logger.error("send_media_failed", address=address, error=str(exc))


__all__ = ["MessageSender", "TelegramMessenger"]
