from aiogram import Router

from app.bot.routers import inbound


def setup_routers() -> Router:
    router = Router(name="gateway")
    router.include_router(inbound.router)
    return router


__all__ = ["setup_routers"]
