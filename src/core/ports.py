"""Ports (interfaces) used by the relay engine.

Ports define the minimal contracts for the source platform, the sink and the
durable stores so the core can run in pull mode (Telethon history) and push
mode (Bot API webhook) without changes here.
"""

from __future__ import annotations

from typing import Awaitable, Callable, Protocol

from core.models import MediaItem, RelayUnit, SourceMessage


class MessageSourcePort(Protocol):
    """History access required by the pull-mode walker."""

    async def fetch_page(self, min_id: int, limit: int) -> list[SourceMessage]:
        """Return up to ``limit`` messages with id greater than ``min_id``."""
        ...

    async def fetch_older(self, offset_id: int, limit: int) -> list[SourceMessage]:
        """Return up to ``limit`` messages older than ``offset_id`` (0 means newest)."""
        ...

    async def download(self, message: SourceMessage, directory: str) -> str:
        """Download the message media into ``directory`` and return its path."""
        ...


class MediaFetcherPort(Protocol):
    """Two-step media retrieval used by the push handler."""

    async def fetch(self, message: SourceMessage) -> tuple[bytes, str]:
        """Return the media bytes and a filename for them."""
        ...


class RelayPort(Protocol):
    """Sink delivery for one finished relay unit."""

    async def send_unit(self, unit: RelayUnit) -> None:
        ...


class CheckpointPort(Protocol):
    """Durable cursor of relay progress."""

    def load(self) -> int:
        ...

    def save(self, message_id: int) -> None:
        ...


class GroupStorePort(Protocol):
    """Durable album buffer shared by concurrent push invocations."""

    async def offer(
        self,
        group_id: str,
        data: bytes,
        filename: str,
        caption: str,
        message_id: int,
    ) -> MediaItem:
        ...

    async def sweep(self, dispatch: Callable[[RelayUnit], Awaitable[None]]) -> int:
        ...

