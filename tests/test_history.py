from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

from core.history import HistoryWalker, locate_start
from core.models import MEDIA_PHOTO, SourceMessage

BASE_DATE = datetime(2024, 1, 1, tzinfo=timezone.utc)


def _msg(message_id: int, minutes: int = 0) -> SourceMessage:
    return SourceMessage(
        message_id=message_id,
        date=BASE_DATE + timedelta(minutes=minutes or message_id),
        caption="",
        media_kind=MEDIA_PHOTO,
        mime_type=None,
        group_id=None,
    )


class PagedSource:
    """Returns pages in shuffled order, optionally repeating the floor message."""

    def __init__(self, ids: list[int], overlap: bool = False) -> None:
        self.messages = [_msg(message_id) for message_id in ids]
        self.overlap = overlap
        self.requests: list[tuple[str, int]] = []

    async def fetch_page(self, min_id: int, limit: int) -> list[SourceMessage]:
        self.requests.append(("page", min_id))
        floor = min_id - 1 if self.overlap else min_id
        newer = sorted((m for m in self.messages if m.message_id > floor), key=lambda m: m.message_id)
        page = newer[:limit]
        return page[1::2] + page[0::2]

    async def fetch_older(self, offset_id: int, limit: int) -> list[SourceMessage]:
        self.requests.append(("older", offset_id))
        older = [m for m in self.messages if offset_id == 0 or m.message_id < offset_id]
        return sorted(older, key=lambda m: m.message_id, reverse=True)[:limit]

    async def download(self, message: SourceMessage, directory: str) -> str:
        raise NotImplementedError


async def _collect(walker: HistoryWalker, start_id: int) -> list[int]:
    return [message.message_id async for message in walker.messages(start_id)]


def test_walker_yields_ascending_ids_across_pages() -> None:
    source = PagedSource([5, 1, 9, 3, 7, 2, 8])
    walker = HistoryWalker(source, page_size=3)

    ids = asyncio.run(_collect(walker, 0))

    assert ids == [1, 2, 3, 5, 7, 8, 9]
    assert [floor for kind, floor in source.requests] == [0, 3, 8, 9]


def test_walker_drops_repeated_floor_messages() -> None:
    source = PagedSource([1, 2, 3, 4, 5], overlap=True)
    walker = HistoryWalker(source, page_size=2)

    ids = asyncio.run(_collect(walker, 0))

    assert ids == [1, 2, 3, 4, 5]


def test_walker_resumes_after_start_id() -> None:
    source = PagedSource([1, 2, 3, 4])
    walker = HistoryWalker(source, page_size=10)

    assert asyncio.run(_collect(walker, 2)) == [3, 4]


def test_floor_moves_only_after_whole_page() -> None:
    source = PagedSource([1, 2, 3, 4])
    walker = HistoryWalker(source, page_size=3)

    async def first_two() -> list[int]:
        seen = []
        async for page in walker.pages(0):
            for message in page[:2]:
                seen.append(message.message_id)
            assert walker.floor == 0
            break
        return seen

    assert asyncio.run(first_two()) == [1, 2]
    assert walker.floor == 0


def test_locate_start_without_filter_starts_from_beginning() -> None:
    source = PagedSource([1, 2, 3])

    assert asyncio.run(locate_start(source, None)) == 0
    assert source.requests == []


def test_locate_start_returns_one_below_first_message_after_since() -> None:
    source = PagedSource(list(range(1, 21)))
    since = BASE_DATE + timedelta(minutes=12)

    start = asyncio.run(locate_start(source, since, page_size=5))

    assert start == 11
    # Page 20..16, 15..11 (crosses the boundary), then 10..6 is entirely older.
    assert source.requests == [("older", 0), ("older", 16), ("older", 11)]


def test_locate_start_empty_channel_and_all_older() -> None:
    assert asyncio.run(locate_start(PagedSource([]), BASE_DATE)) == 0

    source = PagedSource([1, 2, 3])
    later = BASE_DATE + timedelta(days=1)
    assert asyncio.run(locate_start(source, later, page_size=2)) == 3
