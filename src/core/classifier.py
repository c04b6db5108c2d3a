"""Image classification (core domain)."""

from __future__ import annotations

from core.models import MEDIA_DOCUMENT, MEDIA_PHOTO, SourceMessage


def is_image(message: SourceMessage) -> bool:
    """Return True for photos and for documents declared as ``image/*``."""

    if message.media_kind == MEDIA_PHOTO:
        return True
    if message.media_kind == MEDIA_DOCUMENT:
        return (message.mime_type or "").lower().startswith("image/")
    return False
