"""Telethon history adapter.

Implements the core MessageSourcePort on top of a connected TelegramClient.
"""

from __future__ import annotations

import asyncio
import logging
import os

from telethon import TelegramClient, errors

from adapters.telegram_mapper import build_source_message
from core.errors import DownloadError, SourceError
from core.models import SourceMessage

LOGGER = logging.getLogger(__name__)

# FloodWait penalties longer than this are treated as a failed request.
MAX_FLOOD_WAIT_SECONDS = 300


class TelethonMessageSource:
    """Read one channel's history and media through Telethon."""

    def __init__(self, client: TelegramClient, entity) -> None:
        self._client = client
        self._entity = entity

    async def _get_messages(self, **kwargs) -> list:
        for attempt in range(2):
            try:
                return list(await self._client.get_messages(self._entity, **kwargs))
            except errors.FloodWaitError as exc:
                if attempt or exc.seconds > MAX_FLOOD_WAIT_SECONDS:
                    raise SourceError(f"flood wait of {exc.seconds}s") from exc
                LOGGER.warning("FloodWaitError on history fetch. Waiting %ss", exc.seconds)
                await asyncio.sleep(exc.seconds)
            except (errors.RPCError, ConnectionError) as exc:
                raise SourceError(str(exc)) from exc
        return []

    async def fetch_page(self, min_id: int, limit: int) -> list[SourceMessage]:
        # reverse=True walks from the oldest message above min_id upwards.
        messages = await self._get_messages(limit=limit, min_id=min_id, reverse=True)
        return [build_source_message(message) for message in messages if message is not None]

    async def fetch_older(self, offset_id: int, limit: int) -> list[SourceMessage]:
        messages = await self._get_messages(limit=limit, offset_id=offset_id)
        return [build_source_message(message) for message in messages if message is not None]

    async def download(self, message: SourceMessage, directory: str) -> str:
        try:
            path = await self._client.download_media(message.media_ref, file=directory + os.sep)
        except (errors.RPCError, ConnectionError, OSError) as exc:
            raise DownloadError(str(exc)) from exc
        if not path or not os.path.isfile(path):
            raise DownloadError("no file was written")
        return str(path)
