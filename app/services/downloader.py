"""Fetch attachment bytes from the messaging provider."""

from __future__ import annotations

import asyncio
from io import BytesIO
from typing import Protocol

from aiohttp import ClientError
from aiogram import Bot
from aiogram.exceptions import TelegramAPIError, TelegramNetworkError, TelegramServerError

from app.config import MediaSettings, get_settings
from app.logging import logger
from app.services.exceptions import DownloadFailed
from app.utils.retry import retry_async

DOWNLOAD_MAX_ATTEMPTS = 3
DOWNLOAD_BASE_DELAY = 0.5


class MediaDownloader(Protocol):
    async def download(self, locator: str) -> bytes: ...


class TelegramMediaDownloader:
    """Resolve a Telegram ``file_id`` and pull the file into memory."""

    __slots__ = ("bot", "timeout")

    def __init__(self, bot: Bot, settings: MediaSettings | None = None) -> None:
        self.bot = bot
        self.timeout = (settings or get_settings().media).download_timeout_seconds

    async def download(self, locator: str) -> bytes:
        async def _fetch() -> bytes:
            file = await self.bot.get_file(locator)
            buffer = BytesIO()
            await self.bot.download_file(file.file_path, buffer)
            return buffer.getvalue()

        try:
            return await asyncio.wait_for(
                retry_async(
                    _fetch,
                    max_attempts=DOWNLOAD_MAX_ATTEMPTS,
                    base_delay=DOWNLOAD_BASE_DELAY,
                    retry_on=(TelegramNetworkError, TelegramServerError, ClientError),
                    logger=logger,
                    operation_name="telegram_download",
                ),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as exc:
            logger.warning("media_download_timeout", locator=locator, timeout=self.timeout)
            raise DownloadFailed(f"Download timed out after {self.timeout}s") from exc
        except (TelegramAPIError, ClientError) as exc:
            logger.warning("media_download_failed", locator=locator, error=str(exc))
            raise DownloadFailed("Unable to download media from Telegram") from exc


__all__ = ["MediaDownloader", "TelegramMediaDownloader"]
