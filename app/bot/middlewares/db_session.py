"""Middleware that injects an AsyncSession per update."""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Dict

import structlog
from aiogram import BaseMiddleware
from aiogram.types import TelegramObject, Update

from app.db.session import Database


class DbSessionMiddleware(BaseMiddleware):
    """One session per update; services commit their own units of work.

    Anything still pending when the handler returns is committed, and the
    open transaction is rolled back when the handler raises. The update id is
    bound into the logging context for the duration of the update.
    """

    def __init__(self, database: Database) -> None:
        super().__init__()
        self.database = database

    async def __call__(
        self,
        handler: Callable[[TelegramObject, Dict[str, Any]], Awaitable[Any]],
        event: TelegramObject,
        data: Dict[str, Any],
    ) -> Any:
        update_id = event.update_id if isinstance(event, Update) else None
        with structlog.contextvars.bound_contextvars(update_id=update_id):
            async with self.database.session() as session:
                data["session"] = session
                try:
                    result = await handler(event, data)
                except Exception:
                    await session.rollback()
                    raise
                await session.commit()
                return result
