"""MIME type lookup tables for categories and file extensions.

Both tables are plain data: add a row to support a new type. Exact matches win
over prefix matches; anything unmatched falls back to ``document`` / ``bin``.
"""

from __future__ import annotations

from app.domain.models import MediaCategory

DEFAULT_CATEGORY = MediaCategory.DOCUMENT
DEFAULT_EXTENSION = "bin"

CATEGORY_BY_MIME: dict[str, MediaCategory] = {
    "application/ogg": MediaCategory.AUDIO,
    "image/svg+xml": MediaCategory.DOCUMENT,
}

CATEGORY_BY_PREFIX: tuple[tuple[str, MediaCategory], ...] = (
    ("image/", MediaCategory.IMAGE),
    ("video/", MediaCategory.VIDEO),
    ("audio/", MediaCategory.AUDIO),
)

EXTENSION_BY_MIME: dict[str, str] = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/gif": "gif",
    "image/webp": "webp",
    "image/heic": "heic",
    "image/svg+xml": "svg",
    "video/mp4": "mp4",
    "video/3gpp": "3gp",
    "video/quicktime": "mov",
    "video/webm": "webm",
    "audio/ogg": "ogg",
    "application/ogg": "ogg",
    "audio/mpeg": "mp3",
    "audio/mp4": "m4a",
    "audio/aac": "aac",
    "audio/amr": "amr",
    "audio/wav": "wav",
    "application/pdf": "pdf",
    "application/msword": "doc",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": "docx",
    "application/vnd.ms-excel": "xls",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet": "xlsx",
    "application/vnd.ms-powerpoint": "ppt",
    "application/vnd.openxmlformats-officedocument.presentationml.presentation": "pptx",
    "application/zip": "zip",
    "text/plain": "txt",
    "text/csv": "csv",
}


def _normalize(mime_type: str | None) -> str:
    # "audio/ogg; codecs=opus" -> "audio/ogg"
    return (mime_type or "").split(";", 1)[0].strip().lower()


def category_for(mime_type: str | None) -> MediaCategory:
    mime = _normalize(mime_type)
    exact = CATEGORY_BY_MIME.get(mime)
    if exact is not None:
        return exact
    for prefix, category in CATEGORY_BY_PREFIX:
        if mime.startswith(prefix):
            return category
    return DEFAULT_CATEGORY


def extension_for(mime_type: str | None) -> str:
    return EXTENSION_BY_MIME.get(_normalize(mime_type), DEFAULT_EXTENSION)


__all__ = [
    "CATEGORY_BY_MIME",
    "CATEGORY_BY_PREFIX",
    "DEFAULT_CATEGORY",
    "DEFAULT_EXTENSION",
    "EXTENSION_BY_MIME",
    "category_for",
    "extension_for",
]
