from app.bot.middlewares.db_session import DbSessionMiddleware

__all__ = ["DbSessionMiddleware"]
