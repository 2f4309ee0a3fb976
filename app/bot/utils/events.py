"""Convert Telegram messages into transport-neutral inbound events."""

from __future__ import annotations

from aiogram.types import Message

from app.domain.models import Attachment, InboundEvent

DEFAULT_MIME = "application/octet-stream"
PHOTO_MIME = "image/jpeg"
VOICE_MIME = "audio/ogg"
VIDEO_NOTE_MIME = "video/mp4"


def extract_attachments(message: Message) -> list[Attachment]:
    """Return the media carried by ``message``.

    Telegram puts at most one media item in a message (albums arrive as
    separate updates). Animations also populate ``document``, so they are
    checked first.
    """

    if message.photo:
        # Sizes are ordered smallest to largest.
        largest = message.photo[-1]
        return [Attachment(locator=largest.file_id, mime_type=PHOTO_MIME)]
    if message.animation:
        media = message.animation
        return [
            Attachment(
                locator=media.file_id,
                mime_type=media.mime_type or "video/mp4",
                filename=media.file_name,
            )
        ]
    if message.document:
        media = message.document
        return [
            Attachment(
                locator=media.file_id,
                mime_type=media.mime_type or DEFAULT_MIME,
                filename=media.file_name,
            )
        ]
    if message.video:
        media = message.video
        return [
            Attachment(
                locator=media.file_id,
                mime_type=media.mime_type or "video/mp4",
                filename=media.file_name,
            )
        ]
    if message.audio:
        media = message.audio
        return [
            Attachment(
                locator=media.file_id,
                mime_type=media.mime_type or "audio/mpeg",
                filename=media.file_name,
            )
        ]
    if message.voice:
        return [
            Attachment(
                locator=message.voice.file_id,
                mime_type=message.voice.mime_type or VOICE_MIME,
            )
        ]
    if message.video_note:
        return [Attachment(locator=message.video_note.file_id, mime_type=VIDEO_NOTE_MIME)]
    return []


def to_inbound_event(message: Message) -> InboundEvent:
    return InboundEvent(
        sender=str(message.chat.id),
        text=message.text or message.caption or "",
        attachments=extract_attachments(message),
    )


__all__ = ["extract_attachments", "to_inbound_event"]
