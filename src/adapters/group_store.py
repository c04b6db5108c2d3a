"""Directory-per-album store for push mode.

Implements the core GroupStorePort. Each album lives in its own directory:

    <store_dir>/groups/<safe group id>/
        lock        advisory flock handle, one per album
        meta.json   created_at, updated_at, caption, items[{path, name, msg_id}]
        <msg_id>_<hex>_<filename>   raw downloaded bytes of each member

``offer`` waits (bounded) for the album lock; ``sweep`` only takes locks that
are free right now and skips albums another invocation is appending to, since
that invocation refreshes their update time anyway.
"""

from __future__ import annotations

import asyncio
import fcntl
import json
import logging
import os
import re
import secrets
import shutil
import tempfile
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, Optional, TextIO

from core.config import PushConfig
from core.errors import GroupLockTimeout
from core.group_buffer import close_group
from core.models import MediaItem, RelayUnit

LOGGER = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^0-9A-Za-z_-]")
_LOCK_POLL_SECONDS = 0.05


def safe_group_dirname(group_id: str) -> str:
    """Map a platform group id onto a filesystem-safe directory name."""

    return _UNSAFE_CHARS.sub("_", group_id)


def _remove_tree(path: str) -> None:
    shutil.rmtree(path, ignore_errors=True)


def _write_json_atomic(path: str, payload: dict) -> None:
    directory = os.path.dirname(path)
    fd, tmp_path = tempfile.mkstemp(dir=directory, suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            json.dump(payload, handle, ensure_ascii=False)
        os.replace(tmp_path, path)
    except Exception:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)
        raise


class FileGroupStore:
    """Durable album buffer guarded by one advisory lock per album."""

    def __init__(
        self,
        config: PushConfig,
        album_max_files: int = 10,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._config = config
        self._album_max_files = album_max_files
        self._clock = clock
        self._groups_dir = os.path.join(config.store_dir, "groups")

    @property
    def groups_dir(self) -> str:
        return self._groups_dir

    def group_dir(self, group_id: str) -> str:
        return os.path.join(self._groups_dir, safe_group_dirname(group_id))

    @asynccontextmanager
    async def _locked(self, directory: str) -> AsyncIterator[TextIO]:
        """Hold the album lock, waiting up to the configured timeout."""

        deadline = time.monotonic() + self._config.lock_timeout_seconds
        lock_path = os.path.join(directory, "lock")
        while True:
            os.makedirs(directory, exist_ok=True)
            try:
                handle = open(lock_path, "a+")
            except FileNotFoundError:
                # Removed by a concurrent sweep between makedirs and open.
                continue
            try:
                fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
            except BlockingIOError:
                handle.close()
                if time.monotonic() >= deadline:
                    raise GroupLockTimeout(f"lock busy: {directory}")
                await asyncio.sleep(_LOCK_POLL_SECONDS)
                continue
            # A sweep may have removed the directory while we waited; the lock
            # we hold would then belong to an unlinked file.
            if _same_file(handle, lock_path):
                break
            fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
            handle.close()

        try:
            yield handle
        finally:
            fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
            handle.close()

    async def offer(
        self,
        group_id: str,
        data: bytes,
        filename: str,
        caption: str,
        message_id: int,
    ) -> MediaItem:
        """Append one downloaded member to its album record."""

        directory = self.group_dir(group_id)
        meta_path = os.path.join(directory, "meta.json")
        async with self._locked(directory):
            now = self._clock()
            meta: dict[str, Any] = {
                "created_at": now,
                "updated_at": now,
                "caption": caption,
                "items": [],
            }
            existing = _read_meta(meta_path)
            if existing is not None:
                meta.update(existing)
                meta["updated_at"] = now
                # First non-empty caption wins.
                if not meta.get("caption") and caption:
                    meta["caption"] = caption

            path = os.path.join(directory, f"{message_id}_{secrets.token_hex(4)}_{filename}")
            with open(path, "wb") as handle:
                handle.write(data)

            item = MediaItem(path=path, filename=filename, message_id=message_id)
            meta["items"] = list(meta.get("items") or []) + [
                {"path": path, "name": filename, "msg_id": message_id}
            ]
            _write_json_atomic(meta_path, meta)

        LOGGER.debug("Buffered msg %s into group %s (%s items)", message_id, group_id, len(meta["items"]))
        return item

    async def sweep(self, dispatch: Callable[[RelayUnit], Awaitable[None]]) -> int:
        """Flush every album idle longer than the threshold; return how many were sent."""

        try:
            names = sorted(os.listdir(self._groups_dir))
        except FileNotFoundError:
            return 0

        flushed = 0
        for name in names:
            directory = os.path.join(self._groups_dir, name)
            if not os.path.isdir(directory):
                continue
            # Taking the lock may create the lock file, which refreshes the mtime.
            age = _age_seconds(directory, self._clock())
            handle = _try_lock(os.path.join(directory, "lock"))
            if handle is None:
                continue
            try:
                if await self._sweep_locked(name, directory, age, dispatch):
                    flushed += 1
            finally:
                fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
                handle.close()
        return flushed

    async def _sweep_locked(
        self,
        name: str,
        directory: str,
        age: float,
        dispatch: Callable[[RelayUnit], Awaitable[None]],
    ) -> bool:
        meta = _read_meta(os.path.join(directory, "meta.json"))
        if meta is None and age < self._config.idle_seconds:
            # Directory of an album whose first member is still being written.
            return False
        updated_at = _parse_timestamp(meta.get("updated_at") if meta else None)
        if meta is None or not updated_at:
            LOGGER.warning("Removing malformed album record %s", name)
            _remove_tree(directory)
            return False

        if self._clock() - updated_at < self._config.idle_seconds:
            return False

        items = [item for item in map(_parse_item, meta.get("items") or []) if item is not None]
        sent = False
        try:
            if items:
                unit = close_group(items, str(meta.get("caption") or ""), self._album_max_files, name)
                await dispatch(unit)
                sent = True
        except Exception:
            # Stale records are never retried; keeping them would grow forever.
            LOGGER.exception("Album %s flush failed, dropping it", name)
        finally:
            _remove_tree(directory)
        return sent


def _age_seconds(path: str, now: float) -> float:
    try:
        return now - os.stat(path).st_mtime
    except OSError:
        return 0.0


def _parse_timestamp(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _parse_item(entry: Any) -> Optional[MediaItem]:
    """Rebuild a stored member; None if the entry is unusable or its file is gone."""

    if not isinstance(entry, dict) or not entry.get("path"):
        return None
    try:
        message_id = int(entry.get("msg_id") or 0)
    except (TypeError, ValueError):
        LOGGER.warning("Dropping album member with bad msg_id %r", entry.get("msg_id"))
        return None
    path = str(entry["path"])
    if not os.path.isfile(path):
        return None
    return MediaItem(path=path, filename=entry.get("name") or os.path.basename(path), message_id=message_id)


def _same_file(handle: TextIO, path: str) -> bool:
    try:
        return os.fstat(handle.fileno()).st_ino == os.stat(path).st_ino
    except FileNotFoundError:
        return False


def _try_lock(lock_path: str) -> Optional[TextIO]:
    try:
        handle = open(lock_path, "a+")
    except OSError:
        return None
    try:
        fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
    except BlockingIOError:
        handle.close()
        return None
    if not _same_file(handle, lock_path):
        fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
        handle.close()
        return None
    return handle


def _read_meta(path: str) -> Optional[dict]:
    try:
        with open(path, "r", encoding="utf-8") as handle:
            data = json.load(handle)
    except FileNotFoundError:
        return None
    except (OSError, ValueError) as exc:
        LOGGER.warning("Unreadable album metadata %s: %s", path, exc)
        return None
    return data if isinstance(data, dict) else None
