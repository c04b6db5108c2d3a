"""File-backed checkpoint adapter.

Implements the core CheckpointPort as a single text file holding the highest
relayed message id. Writes go to a temporary file that replaces the record
in one rename, under an exclusive lock, so a kill mid-write leaves either
the old value or the new one.
"""

from __future__ import annotations

import fcntl
import logging
import os
import tempfile

LOGGER = logging.getLogger(__name__)


class FileCheckpointStore:
    """Durable single-value cursor that satisfies the CheckpointPort contract."""

    def __init__(self, path: str) -> None:
        self._path = path
        self._lock_path = f"{path}.lock"

    @property
    def path(self) -> str:
        return self._path

    def load(self) -> int:
        """Return the saved message id, or 0 if absent or unreadable."""

        try:
            with open(self._path, "r", encoding="utf-8") as handle:
                raw = handle.read().strip()
        except FileNotFoundError:
            return 0
        except OSError as exc:
            LOGGER.warning("Could not read checkpoint %s: %s", self._path, exc)
            return 0
        if not raw.isdigit():
            LOGGER.warning("Ignoring non-numeric checkpoint in %s", self._path)
            return 0
        return int(raw)

    def save(self, message_id: int) -> None:
        """Atomically overwrite the record with ``message_id``."""

        directory = os.path.dirname(os.path.abspath(self._path))
        os.makedirs(directory, exist_ok=True)
        with open(self._lock_path, "a") as lock_handle:
            fcntl.flock(lock_handle.fileno(), fcntl.LOCK_EX)
            try:
                fd, tmp_path = tempfile.mkstemp(dir=directory, suffix=".tmp")
                try:
                    with os.fdopen(fd, "w", encoding="utf-8") as handle:
                        handle.write(str(int(message_id)))
                        handle.flush()
                        os.fsync(handle.fileno())
                    os.replace(tmp_path, self._path)
                except Exception:
                    if os.path.exists(tmp_path):
                        os.remove(tmp_path)
                    raise
            finally:
                fcntl.flock(lock_handle.fileno(), fcntl.LOCK_UN)
        LOGGER.debug("Checkpoint saved: %s", message_id)
