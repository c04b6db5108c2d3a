"""Core domain models.

These dataclasses are shared across the core and adapters to avoid tight
coupling to any integration-specific types.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

MEDIA_PHOTO = "photo"
MEDIA_DOCUMENT = "document"


@dataclass(frozen=True)
class SourceMessage:
    """Minimal message view used by the relay engine."""

    message_id: int
    date: Optional[datetime]
    caption: str
    media_kind: Optional[str]
    mime_type: Optional[str]
    group_id: Optional[str]
    # Integration handle used to download the media (Telethon message, file_id).
    media_ref: Any = field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class MediaItem:
    """A downloaded file owned by the engine until it is relayed or discarded."""

    path: str
    filename: str
    message_id: int


@dataclass(frozen=True)
class RelayUnit:
    """One outbound dispatch: a standalone image or a closed album."""

    items: tuple[MediaItem, ...]
    caption: str
    group_id: Optional[str] = None
    # Album members beyond the sink's file cap; deleted, never relayed.
    overflow: tuple[MediaItem, ...] = ()

    @property
    def last_message_id(self) -> int:
        return max(item.message_id for item in self.all_items)

    @property
    def all_items(self) -> tuple[MediaItem, ...]:
        return self.items + self.overflow


@dataclass
class RunStats:
    """Counters reported at the end of a relay run."""

    messages_scanned: int = 0
    messages_skipped: int = 0
    units_dispatched: int = 0
    units_failed: int = 0
    files_sent: int = 0
    checkpoint: int = 0
