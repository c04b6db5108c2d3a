"""Push-mode relay handler.

Each webhook invocation is independent: no album state survives in memory
between calls. Album members are appended to a durable per-group store and
every invocation ends with a sweep that closes albums which have been idle
longer than the configured threshold. The sweep runs even for updates that
carry no image, since it is the only way a finished album gets relayed.
"""

from __future__ import annotations

import logging
import os
import uuid
from typing import Optional

from core.classifier import is_image
from core.config import RelayConfig
from core.engine import discard_files
from core.errors import DownloadError, GroupLockTimeout, RelayError
from core.group_buffer import close_group
from core.models import MediaItem, RelayUnit, SourceMessage
from core.ports import GroupStorePort, MediaFetcherPort, RelayPort
from core.rate_limiter import RateLimiter

LOGGER = logging.getLogger(__name__)


class PushRelayHandler:
    """Handle one inbound message and sweep idle albums."""

    def __init__(
        self,
        fetcher: MediaFetcherPort,
        store: GroupStorePort,
        relay: RelayPort,
        config: RelayConfig,
        tmp_dir: str,
        limiter: Optional[RateLimiter] = None,
    ) -> None:
        self._fetcher = fetcher
        self._store = store
        self._relay = relay
        self._config = config
        self._tmp_dir = tmp_dir
        self._limiter = limiter

    async def handle(self, message: Optional[SourceMessage]) -> None:
        """Process one extracted message (or none) and always sweep afterwards."""

        try:
            if message is not None:
                await self._route(message)
        finally:
            flushed = await self._store.sweep(self.dispatch)
            if flushed:
                LOGGER.info("Sweep flushed %s idle album(s)", flushed)

    async def _route(self, message: SourceMessage) -> None:
        if not is_image(message):
            return

        try:
            data, filename = await self._fetcher.fetch(message)
        except DownloadError as exc:
            LOGGER.warning("Download error for msg %s: %s", message.message_id, exc)
            return

        if not data:
            LOGGER.debug("Skip msg %s: empty download", message.message_id)
            return
        if len(data) > self._config.max_bytes:
            LOGGER.warning("Skip msg %s: %s bytes > %s", message.message_id, len(data), self._config.max_bytes)
            return

        if message.group_id is not None:
            try:
                await self._store.offer(message.group_id, data, filename, message.caption, message.message_id)
            except GroupLockTimeout as exc:
                LOGGER.error("Could not buffer msg %s for group %s: %s", message.message_id, message.group_id, exc)
            except OSError as exc:
                LOGGER.error("Could not store msg %s for group %s: %s", message.message_id, message.group_id, exc)
            return

        item = self._write_temp(data, filename, message.message_id)
        if item is None:
            return
        await self.dispatch(close_group([item], message.caption, self._config.album_max_files))

    def _write_temp(self, data: bytes, filename: str, message_id: int) -> Optional[MediaItem]:
        path = os.path.join(self._tmp_dir, f"{message_id}_{uuid.uuid4().hex[:8]}_{filename}")
        try:
            os.makedirs(self._tmp_dir, exist_ok=True)
            with open(path, "wb") as handle:
                handle.write(data)
        except OSError as exc:
            LOGGER.error("Could not write msg %s to %s: %s", message_id, path, exc)
            return None
        return MediaItem(path=path, filename=filename, message_id=message_id)

    async def dispatch(self, unit: RelayUnit) -> None:
        """Throttle and send one unit, deleting its local files afterwards."""

        try:
            if self._limiter is not None and not await self._limiter.acquire():
                return
            await self._relay.send_unit(unit)
            LOGGER.info("Relayed %s file(s) up to msg %s", len(unit.items), unit.last_message_id)
        except RelayError as exc:
            label = f"group {unit.group_id}" if unit.group_id else f"msg {unit.last_message_id}"
            LOGGER.error("Discord error for %s: %s", label, exc)
        finally:
            discard_files(unit.all_items)
