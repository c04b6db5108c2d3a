"""In-memory album grouping for the pull-mode scan (core domain).

A linear history scan sees albums as contiguous runs of messages sharing one
group id, so at most one group is open at a time. Offering an item from a
different group (or a standalone item) closes the open group first.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Callable, Iterable, Optional

from core.models import MediaItem, RelayUnit


@dataclass
class PendingGroup:
    """An album that is still receiving members."""

    group_id: str
    caption: str = ""
    items: list[MediaItem] = field(default_factory=list)
    created_at: float = 0.0
    updated_at: float = 0.0

    def add(self, item: MediaItem, caption: str, now: float) -> None:
        # First non-empty caption wins.
        if not self.caption and caption:
            self.caption = caption
        if not self.items:
            self.created_at = now
        self.items.append(item)
        self.updated_at = now


def close_group(
    items: Iterable[MediaItem],
    caption: str,
    max_files: int,
    group_id: Optional[str] = None,
) -> RelayUnit:
    """Build a relay unit from album members.

    Members are ordered by message id and capped to ``max_files``; the rest
    travel in ``overflow`` so the caller can delete them.
    """

    ordered = sorted(items, key=lambda item: item.message_id)
    return RelayUnit(
        items=tuple(ordered[:max_files]),
        caption=caption,
        group_id=group_id,
        overflow=tuple(ordered[max_files:]),
    )


class GroupBuffer:
    """Single open album for a linear scan."""

    def __init__(self, max_files: int = 10, clock: Callable[[], float] = time.time) -> None:
        self._max_files = max_files
        self._clock = clock
        self._open: Optional[PendingGroup] = None

    @property
    def open_group(self) -> Optional[PendingGroup]:
        return self._open

    @property
    def is_empty(self) -> bool:
        return self._open is None

    def offer(self, item: MediaItem, group_id: Optional[str], caption: str) -> list[RelayUnit]:
        """Route one downloaded item and return the units that became ready, in order."""

        ready: list[RelayUnit] = []
        if self._open is not None and self._open.group_id != group_id:
            closed = self.flush()
            if closed is not None:
                ready.append(closed)

        if group_id is None:
            ready.append(close_group([item], caption, self._max_files))
            return ready

        if self._open is None:
            self._open = PendingGroup(group_id=group_id)
        self._open.add(item, caption, self._clock())
        return ready

    def flush(self) -> Optional[RelayUnit]:
        """Close the open group, if any, and return its unit."""

        group = self._open
        self._open = None
        if group is None or not group.items:
            return None
        return close_group(group.items, group.caption, self._max_files, group.group_id)

    def discard(self) -> list[MediaItem]:
        """Drop the open group without relaying it and return its members."""

        group = self._open
        self._open = None
        return list(group.items) if group else []
