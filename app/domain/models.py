"""Pydantic models shared across logic/application layers."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field


class MediaCategory(str, Enum):
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"
    DOCUMENT = "document"


class AccountState(str, Enum):
    """Delete-confirmation lifecycle of an account."""

    NORMAL = "normal"
    AWAITING_CONFIRM = "awaiting_confirm"
    DELETED = "deleted"


class Attachment(BaseModel):
    """One media item carried by an inbound message."""

    locator: str = Field(min_length=1, description="Provider handle used to fetch the bytes.")
    mime_type: str = "application/octet-stream"
    filename: str | None = None


class InboundEvent(BaseModel):
    """Normalized, already-authenticated inbound message."""

    sender: str = Field(min_length=1)
    text: str = ""
    attachments: list[Attachment] = Field(default_factory=list)

    @property
    def has_attachments(self) -> bool:
        return bool(self.attachments)


class IngestOutcome(str, Enum):
    STORED = "stored"
    QUOTA_EXCEEDED = "quota_exceeded"
    FAILED = "failed"


class IngestResult(BaseModel):
    outcome: IngestOutcome
    reply: str
    storage_key: str | None = None
    size_bytes: int = 0


__all__ = [
    "AccountState",
    "Attachment",
    "InboundEvent",
    "IngestOutcome",
    "IngestResult",
    "MediaCategory",
]
