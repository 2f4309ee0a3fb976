"""Application entrypoint."""

from __future__ import annotations

import asyncio

from aiogram import Bot, Dispatcher
from aiogram.client.session.aiohttp import AiohttpSession
from aiogram.webhook.aiohttp_server import SimpleRequestHandler, setup_application
from aiohttp import web

from app.bot.middlewares import DbSessionMiddleware
from app.bot.routers import setup_routers
from app.config import GatewaySettings, get_settings
from app.db.session import Database
from app.logging import configure_logging, logger
from app.services.downloader import TelegramMediaDownloader
from app.services.error_monitor import ErrorMonitor
from app.services.messaging import TelegramMessenger
from app.services.object_store import ObjectStoreGateway
from app.services.orchestrator import InboundOrchestrator
from app.services.rate_limit import RateLimiter, build_rate_window_store


def build_orchestrator(
    bot: Bot,
    settings: GatewaySettings,
    database: Database,
    store: ObjectStoreGateway,
) -> InboundOrchestrator:
    rate_store = build_rate_window_store(settings.rate_limit, database)
    return InboundOrchestrator(
        store=store,
        downloader=TelegramMediaDownloader(bot, settings.media),
        sender=TelegramMessenger(bot),
        rate_limiter=RateLimiter(rate_store, settings.rate_limit),
        settings=settings,
    )


async def run_webhook(dp: Dispatcher, bot: Bot, settings: GatewaySettings) -> None:
    """Serve Telegram updates over HTTPS callbacks until cancelled."""

    webhook = settings.webhook
    secret = webhook.secret.get_secret_value() if webhook.secret else None
    app = web.Application()
    # Requests without the matching X-Telegram-Bot-Api-Secret-Token header get 401.
    SimpleRequestHandler(dispatcher=dp, bot=bot, secret_token=secret).register(app, path=webhook.path)
    setup_application(app, dp, bot=bot)

    url = f"{str(webhook.base_url).rstrip('/')}{webhook.path}"
    await bot.set_webhook(url, secret_token=secret)

    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, host=webhook.host, port=webhook.port)
    await site.start()
    logger.info("webhook_listening", url=url, host=webhook.host, port=webhook.port)
    try:
        await asyncio.Event().wait()
    finally:
        await runner.cleanup()


async def main() -> None:
    settings = get_settings()
    configure_logging(settings.log_level, json_output=settings.environment != "dev")

    session = (
        AiohttpSession(proxy=settings.telegram_proxy) if settings.telegram_proxy else None
    )
    bot = Bot(token=settings.telegram_token.get_secret_value(), session=session)
    dp = Dispatcher()
    dp.include_router(setup_routers())
    error_monitor = ErrorMonitor(settings=settings)
    dp.errors.register(error_monitor.handle_error)

    database = Database(settings=settings)
    if settings.database.create_schema:
        await database.create_schema()
    dp.update.outer_middleware(DbSessionMiddleware(database))

    store = ObjectStoreGateway(settings.storage)
    await store.ensure_bucket()

    dp["orchestrator"] = build_orchestrator(bot, settings, database, store)

    mode = "webhook" if settings.webhook.base_url else "polling"
    logger.info("gateway_starting", environment=settings.environment, mode=mode)
    try:
        if settings.webhook.base_url:
            await run_webhook(dp, bot, settings)
        else:
            await dp.start_polling(bot)
    finally:
        await database.dispose()


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
