"""Error types raised across the relay.

Adapters translate library exceptions into these so the engine only has to
know about a handful of failure kinds.
"""

from __future__ import annotations

from typing import Optional


class ConfigError(RuntimeError):
    """Startup configuration is missing or invalid."""


class SourceError(Exception):
    """The source platform failed to answer a history or file request."""


class DownloadError(SourceError):
    """Media could not be retrieved from the source platform."""


class RelayError(Exception):
    """The sink rejected a unit or could not be reached."""

    def __init__(self, message: str, status: Optional[int] = None, body: str = "") -> None:
        super().__init__(message)
        self.status = status
        self.body = body


class GroupLockTimeout(Exception):
    """A durable album record stayed locked longer than allowed."""
