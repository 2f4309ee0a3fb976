"""Telegram sending helpers with retry support."""

from __future__ import annotations

from typing import Any, Awaitable, Callable

from aiogram import Bot
from aiogram.exceptions import TelegramNetworkError, TelegramRetryAfter, TelegramServerError
from aiogram.types import Message

from app.logging import logger
from app.utils.retry import retry_async

TELEGRAM_SEND_MAX_ATTEMPTS = 3
TELEGRAM_SEND_BASE_DELAY = 0.3
# Client errors (blocked bot, bad chat id) will not improve on retry.
RETRYABLE_ERRORS = (TelegramNetworkError, TelegramServerError, TelegramRetryAfter)


async def _send_with_retry(operation_name: str, send: Callable[[], Awaitable[Any]]) -> Any:
    return await retry_async(
        send,
        max_attempts=TELEGRAM_SEND_MAX_ATTEMPTS,
        base_delay=TELEGRAM_SEND_BASE_DELAY,
        retry_on=RETRYABLE_ERRORS,
        logger=logger,
        operation_name=operation_name,
    )


async def answer_with_retry(message: Message, text: str, **kwargs: Any) -> Any:
    """Reply in the chat ``message`` came from."""

    return await _send_with_retry("telegram_answer", lambda: message.answer(text, **kwargs))


async def bot_send_with_retry(bot: Bot, *, chat_id: int, text: str, **kwargs: Any) -> Any:
    return await _send_with_retry(
        "telegram_send_message",
        lambda: bot.send_message(chat_id=chat_id, text=text, **kwargs),
    )


async def bot_send_document_with_retry(
    bot: Bot, *, chat_id: int, document: str, caption: str | None = None, **kwargs: Any
) -> Any:
    """Send a document by URL; Telegram fetches the URL itself."""

    return await _send_with_retry(
        "telegram_send_document",
        lambda: bot.send_document(chat_id=chat_id, document=document, caption=caption, **kwargs),
    )


__all__ = [
    "RETRYABLE_ERRORS",
    "answer_with_retry",
    "bot_send_document_with_retry",
    "bot_send_with_retry",
]
