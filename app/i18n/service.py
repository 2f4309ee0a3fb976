"""File-based reply catalog with in-memory caching."""

from __future__ import annotations

import json
from functools import lru_cache
from pathlib import Path
from typing import Any

from app.logging import logger

LOCALES_DIR = Path(__file__).with_name("locales")


class I18nService:
    """Looks up reply templates by dotted key and fills named placeholders.

    Unknown locales fall back to ``default_locale``; unknown keys render as the
    key itself so a missing entry is visible in the chat rather than fatal.
    """

    def __init__(self, *, locales_path: str | Path | None = None, default_locale: str = "en") -> None:
        self.locales_path = Path(locales_path or LOCALES_DIR)
        self.default_locale = default_locale

    def gettext(self, key: str, *, locale: str | None = None, **kwargs: Any) -> str:
        loc = (locale or self.default_locale).lower()
        text = self._lookup(loc, key)
        if text is None and loc != self.default_locale:
            text = self._lookup(self.default_locale, key)
        if text is None:
            logger.warning("i18n_key_missing", key=key, locale=loc)
            return key
        if not kwargs:
            return text
        try:
            return text.format(**kwargs)
        except (KeyError, IndexError) as exc:
            logger.warning("i18n_placeholder_missing", key=key, placeholder=str(exc))
            return text

    @lru_cache(maxsize=16)
    def _load_locale(self, locale: str) -> dict[str, str]:
        file_path = self.locales_path / f"{locale}.json"
        if not file_path.exists():
            return {}
        return json.loads(file_path.read_text(encoding="utf-8"))

    def _lookup(self, locale: str, key: str) -> str | None:
        return self._load_locale(locale).get(key)


@lru_cache(maxsize=8)
def get_i18n(default_locale: str = "en") -> I18nService:
    """Shared catalog per default locale so the JSON is parsed once."""

    return I18nService(default_locale=default_locale)


__all__ = ["I18nService", "get_i18n"]
