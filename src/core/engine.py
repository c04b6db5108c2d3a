"""Pull-mode relay engine.

The engine walks channel history in ascending id order and enforces a strict
order for every message:
1) Skip ids already behind the cursor, messages older than ``since`` and
   anything that is not an image
2) Download the media (failures skip the message, never the run)
3) Drop empty or oversized files
4) Route through the album buffer; a different group id closes the open album
5) For every ready unit: throttle, dispatch, delete local copies, checkpoint

This module is integration-agnostic. It only relies on ports for the source,
the sink and the checkpoint, so tests can drive it with plain fakes.
"""

from __future__ import annotations

import logging
import os
from typing import Iterable

from core.cancellation import CancellationToken
from core.classifier import is_image
from core.config import RelayConfig
from core.errors import DownloadError, RelayError, SourceError
from core.group_buffer import GroupBuffer
from core.history import HistoryWalker
from core.models import MediaItem, RelayUnit, RunStats, SourceMessage
from core.ports import CheckpointPort, MessageSourcePort, RelayPort
from core.rate_limiter import RateLimiter

LOGGER = logging.getLogger(__name__)


def discard_files(items: Iterable[MediaItem]) -> None:
    """Delete local copies; failures only cost disk space."""

    for item in items:
        try:
            os.remove(item.path)
        except FileNotFoundError:
            pass
        except OSError as exc:
            LOGGER.debug("Could not delete %s: %s", item.path, exc)


class PullRelayEngine:
    """Orchestrates history walking, album grouping, throttling and checkpoints."""

    def __init__(
        self,
        source: MessageSourcePort,
        relay: RelayPort,
        checkpoint: CheckpointPort,
        limiter: RateLimiter,
        config: RelayConfig,
        work_dir: str,
        cancel: CancellationToken,
    ) -> None:
        self._source = source
        self._relay = relay
        self._checkpoint = checkpoint
        self._limiter = limiter
        self._config = config
        self._work_dir = work_dir
        self._cancel = cancel
        self._buffer = GroupBuffer(max_files=config.album_max_files)
        self._saved = 0
        self._aborted = False
        self.stats = RunStats()

    def _should_stop(self) -> bool:
        if self._cancel.cancelled or self._aborted:
            return True
        limit = self._config.unit_limit
        return limit > 0 and self.stats.units_dispatched >= limit

    def _advance_checkpoint(self, message_id: int) -> None:
        # Only ever move forward.
        if message_id <= self._saved:
            return
        self._checkpoint.save(message_id)
        self._saved = message_id
        self.stats.checkpoint = message_id

    async def run(self, start_id: int) -> RunStats:
        """Relay every image newer than ``start_id`` and return run counters."""

        os.makedirs(self._work_dir, exist_ok=True)
        self._saved = start_id
        self.stats = RunStats(checkpoint=start_id)
        LOGGER.info("Starting relay after message id %s", start_id)

        walker = HistoryWalker(self._source, self._config.page_size, self._cancel)
        try:
            async for page in walker.pages(start_id):
                for message in page:
                    if self._should_stop():
                        break
                    await self._handle_message(message)
                if self._should_stop():
                    break
                # Skipped messages are safe to move past once no album is pending.
                if self._buffer.is_empty:
                    self._advance_checkpoint(page[-1].message_id)
        except SourceError as exc:
            LOGGER.error("History fetch failed above id %s: %s", walker.floor, exc)
            self._aborted = True

        if self._should_stop():
            # The open album was never checkpointed; a later run re-downloads it,
            # so local copies are deleted now rather than left for that run.
            leftover = self._buffer.discard()
            if leftover:
                LOGGER.info("Stopping with an open album of %s item(s); the next run re-reads it", len(leftover))
                discard_files(leftover)
        else:
            unit = self._buffer.flush()
            if unit is not None:
                await self._dispatch(unit)

        LOGGER.info(
            "Relay finished: units=%s failed=%s files=%s scanned=%s skipped=%s checkpoint=%s",
            self.stats.units_dispatched,
            self.stats.units_failed,
            self.stats.files_sent,
            self.stats.messages_scanned,
            self.stats.messages_skipped,
            self.stats.checkpoint,
        )
        return self.stats

    def _skip(self, message: SourceMessage, reason: str) -> None:
        self.stats.messages_skipped += 1
        LOGGER.debug("Skip msg %s: %s", message.message_id, reason)

    async def _handle_message(self, message: SourceMessage) -> None:
        self.stats.messages_scanned += 1

        since = self._config.since
        if since is not None and message.date is not None and message.date < since:
            self._skip(message, "older than since filter")
            return

        if not is_image(message):
            self._skip(message, "not an image")
            return

        try:
            path = await self._source.download(message, self._work_dir)
        except DownloadError as exc:
            LOGGER.warning("Download error for msg %s: %s", message.message_id, exc)
            self.stats.messages_skipped += 1
            return

        item = MediaItem(path=path, filename=os.path.basename(path), message_id=message.message_id)
        try:
            size = os.path.getsize(path)
        except OSError:
            size = 0
        if size <= 0:
            self._skip(message, "empty download")
            discard_files([item])
            return
        if size > self._config.max_bytes:
            LOGGER.warning("Skip msg %s: %s bytes > %s", message.message_id, size, self._config.max_bytes)
            self.stats.messages_skipped += 1
            discard_files([item])
            return

        for unit in self._buffer.offer(item, message.group_id, message.caption):
            if self._should_stop():
                # Not checkpointed, so the next run picks these up again.
                discard_files(unit.all_items)
                continue
            await self._dispatch(unit)

    async def _dispatch(self, unit: RelayUnit) -> None:
        if not await self._limiter.acquire():
            discard_files(unit.all_items)
            return

        if unit.overflow:
            LOGGER.info(
                "Album %s has %s items, relaying the first %s",
                unit.group_id,
                len(unit.all_items),
                len(unit.items),
            )
        try:
            await self._relay.send_unit(unit)
        except RelayError as exc:
            self.stats.units_failed += 1
            label = f"group {unit.group_id}" if unit.group_id else f"msg {unit.last_message_id}"
            LOGGER.error("Discord error for %s: %s", label, exc)
        else:
            self.stats.files_sent += len(unit.items)
            LOGGER.info(
                "Relayed %s file(s) up to msg %s%s",
                len(unit.items),
                unit.last_message_id,
                f" (group {unit.group_id})" if unit.group_id else "",
            )
        finally:
            discard_files(unit.all_items)

        # One attempt per unit: a failed send is not retried on resume.
        self.stats.units_dispatched += 1
        self._advance_checkpoint(unit.last_message_id)
