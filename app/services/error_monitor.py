"""Last-resort handling of errors that escape the inbound handlers."""

from __future__ import annotations

import traceback
from typing import Any

from aiogram import Bot
from aiogram.dispatcher.event.bases import UNHANDLED
from aiogram.enums import ChatType
from aiogram.types import ErrorEvent, Message, Update

from app.bot.utils.telegram import bot_send_with_retry
from app.config import GatewaySettings
from app.i18n import I18nService, get_i18n
from app.logging import logger

# Telegram messages are limited to 4096 characters.
TELEGRAM_MESSAGE_LIMIT = 3900
TRACEBACK_CHAR_LIMIT = 1800


class ErrorMonitor:
    """Registered on ``dp.errors``: apologise to the sender, then notify the admin."""

    def __init__(self, settings: GatewaySettings, i18n: I18nService | None = None) -> None:
        self._settings = settings
        self._i18n = i18n or get_i18n(settings.default_language)

    async def handle_error(self, event: ErrorEvent, bot: Bot) -> Any:
        update_id = getattr(event.update, "update_id", None)
        logger.error(
            "gateway_error_captured",
            exception_type=event.exception.__class__.__name__,
            exception=str(event.exception),
            update_id=update_id,
        )

        message = self._source_message(event.update)
        if message is not None and message.chat.type == ChatType.PRIVATE:
            try:
                await bot_send_with_retry(
                    bot,
                    chat_id=message.chat.id,
                    text=self._i18n.gettext("error.generic"),
                    parse_mode=None,
                )
            except Exception:
                logger.exception("error_monitor_user_reply_failed", update_id=update_id)

        admin_id = self._settings.admin_telegram_id
        if admin_id is None:
            return UNHANDLED

        try:
            await bot_send_with_retry(
                bot,
                chat_id=admin_id,
                text=self._build_message(event, message),
                parse_mode=None,
            )
        except Exception:
            logger.exception("error_monitor_notification_failed", update_id=update_id)
        return UNHANDLED

    def _build_message(self, event: ErrorEvent, message: Message | None) -> str:
        exception = event.exception
        lines = [
            "GATEWAY ERROR",
            f"Environment: {self._settings.environment}",
            f"Exception: {exception.__class__.__name__}: {exception}",
            f"Update ID: {getattr(event.update, 'update_id', 'unknown')}",
            f"Chat: {self._describe_chat(message)}",
            f"Content: {self._describe_content(message)}",
        ]
        traceback_text = self._format_traceback(exception)
        if traceback_text:
            lines.extend(["", "Traceback:", traceback_text])

        text = "\n".join(lines).strip()
        return self._truncate(text, TELEGRAM_MESSAGE_LIMIT)

    @staticmethod
    def _source_message(update: Update | None) -> Message | None:
        if update is None:
            return None
        return update.message or update.edited_message

    @staticmethod
    def _describe_chat(message: Message | None) -> str:
        if message is None:
            return "unknown"
        return f"{message.chat.id} | {message.chat.type}"

    @staticmethod
    def _describe_content(message: Message | None) -> str:
        # Message text is user data; only its shape goes to the admin.
        if message is None:
            return "unknown"
        if message.content_type == "text":
            return f"text ({len(message.text or '')} chars)"
        content_type = message.content_type
        return getattr(content_type, "value", str(content_type))

    def _format_traceback(self, exception: BaseException) -> str:
        trace = "".join(traceback.format_exception(exception.__class__, exception, exception.__traceback__))
        trace = trace.strip()
        if not trace:
            return ""
        return self._truncate(trace, TRACEBACK_CHAR_LIMIT)

    @staticmethod
    def _truncate(value: str, limit: int) -> str:
        value = value.strip()
        if len(value) <= limit:
            return value
        return f"{value[: limit - 15].rstrip()}\n...[truncated]"


__all__ = ["ErrorMonitor"]
