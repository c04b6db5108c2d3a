"""Telegram-to-core message mapping adapter.

This keeps Telethon and Bot API details out of the relay engine. Pull mode
maps Telethon messages; push mode maps Bot API update payloads.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from telethon.tl.custom import Message

from core.models import MEDIA_DOCUMENT, MEDIA_PHOTO, SourceMessage


def _media_kind(message: Message) -> tuple[Optional[str], Optional[str]]:
    if getattr(message, "photo", None) is not None:
        return MEDIA_PHOTO, None
    document = getattr(message, "document", None)
    if document is not None:
        return MEDIA_DOCUMENT, getattr(document, "mime_type", None)
    return None, None


def build_source_message(message: Message) -> SourceMessage:
    """Build a core SourceMessage from a Telethon Message."""

    kind, mime_type = _media_kind(message)
    grouped_id = getattr(message, "grouped_id", None)
    caption = getattr(message, "message", None)
    return SourceMessage(
        message_id=int(message.id),
        date=message.date,
        caption=caption if isinstance(caption, str) else "",
        media_kind=kind,
        mime_type=mime_type,
        group_id=str(grouped_id) if grouped_id is not None else None,
        media_ref=message,
    )


def _best_photo_file_id(sizes: list[dict]) -> Optional[str]:
    # Bot API lists several renditions; the largest file is the original.
    candidates = [size for size in sizes if isinstance(size, dict)]
    if not candidates:
        return None
    best = max(candidates, key=lambda size: size.get("file_size") or 0)
    return best.get("file_id")


def extract_update_message(update: dict) -> Optional[dict]:
    """Return the channel post or message carried by a Bot API update."""

    for key in ("channel_post", "message"):
        message = update.get(key)
        if isinstance(message, dict):
            return message
    return None


def message_from_update(update: dict) -> Optional[SourceMessage]:
    """Map a Bot API update onto a SourceMessage; None if it carries no message."""

    message = extract_update_message(update)
    if message is None:
        return None

    kind: Optional[str] = None
    mime_type: Optional[str] = None
    file_id: Any = None
    photo = message.get("photo")
    document = message.get("document")
    if isinstance(photo, list):
        kind = MEDIA_PHOTO
        file_id = _best_photo_file_id(photo)
    elif isinstance(document, dict):
        kind = MEDIA_DOCUMENT
        mime_type = document.get("mime_type")
        file_id = document.get("file_id")

    raw_date = message.get("date")
    date = datetime.fromtimestamp(raw_date, tz=timezone.utc) if isinstance(raw_date, int) else None
    group_id = message.get("media_group_id")
    caption = message.get("caption")

    return SourceMessage(
        message_id=int(message.get("message_id") or 0),
        date=date,
        caption=caption if isinstance(caption, str) else "",
        media_kind=kind,
        mime_type=mime_type,
        group_id=str(group_id) if group_id is not None else None,
        media_ref=file_id,
    )
