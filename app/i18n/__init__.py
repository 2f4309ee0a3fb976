from app.i18n.service import I18nService, get_i18n

__all__ = ["I18nService", "get_i18n"]
