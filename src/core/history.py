"""Paginated, resumable walk over a channel's message history."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import AsyncIterator, Optional

from core.cancellation import CancellationToken
from core.models import SourceMessage
from core.ports import MessageSourcePort

LOGGER = logging.getLogger(__name__)


class HistoryWalker:
    """Yield messages in ascending id order, one page at a time.

    The floor (``min_id`` of the next request) only moves to the highest id
    of a page after the whole page has been handed out, so a crash mid-page
    never skips unseen messages with smaller ids.
    """

    def __init__(
        self,
        source: MessageSourcePort,
        page_size: int = 100,
        cancel: Optional[CancellationToken] = None,
    ) -> None:
        self._source = source
        self._page_size = page_size
        self._cancel = cancel or CancellationToken()
        self.floor = 0

    async def pages(self, start_id: int = 0) -> AsyncIterator[list[SourceMessage]]:
        """Yield sorted pages of messages newer than ``start_id``."""

        self.floor = start_id
        while not self._cancel.cancelled:
            batch = await self._source.fetch_page(self.floor, self._page_size)
            if not batch:
                return

            # Upstream ordering is not guaranteed; overlapping pages may repeat ids.
            page = sorted(
                (message for message in batch if message.message_id > self.floor),
                key=lambda message: message.message_id,
            )
            if not page:
                LOGGER.warning("Page above id %s made no progress, stopping", self.floor)
                return

            yield page
            self.floor = page[-1].message_id

    async def messages(self, start_id: int = 0) -> AsyncIterator[SourceMessage]:
        """Flatten :meth:`pages` into a stream of messages."""

        last_id = start_id
        async for page in self.pages(start_id):
            for message in page:
                if message.message_id <= last_id:
                    continue
                last_id = message.message_id
                yield message


async def locate_start(
    source: MessageSourcePort,
    since: Optional[datetime],
    page_size: int = 100,
) -> int:
    """Find a resume point for a first run that has no checkpoint.

    Scans backward from the newest message. Without a time filter every
    message is eligible, so the walk starts from the beginning (0). With a
    filter, the result is one below the oldest message dated at or after
    ``since``; the scan stops early once a whole page predates the filter.
    """

    if since is None:
        return 0

    offset_id = 0
    newest: Optional[int] = None
    oldest: Optional[int] = None
    boundary: Optional[int] = None

    while True:
        page = await source.fetch_older(offset_id, page_size)
        if not page:
            break

        ids = [message.message_id for message in page]
        page_oldest = min(ids)
        if newest is None:
            newest = max(ids)
        if oldest is not None and page_oldest >= oldest:
            # No backward progress.
            break
        oldest = page_oldest

        all_older = True
        for message in page:
            if message.date is None or message.date >= since:
                all_older = False
                if boundary is None or message.message_id < boundary:
                    boundary = message.message_id
        if all_older:
            break
        offset_id = page_oldest

    if newest is None:
        return 0
    if boundary is None:
        # Everything predates the filter; nothing left to relay.
        return newest
    LOGGER.info("Located first message at or after %s: id=%s", since.isoformat(), boundary)
    return boundary - 1
