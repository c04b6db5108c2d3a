"""Bot API file retrieval adapter.

Implements the core MediaFetcherPort with the Bot API's two-step download:
``getFile`` resolves a file_id to a ``file_path``, then the bytes are fetched
from the file endpoint derived from the token and that path.
"""

from __future__ import annotations

import asyncio
import logging
import posixpath
from typing import Optional

import aiohttp

from core.errors import DownloadError
from core.models import SourceMessage

LOGGER = logging.getLogger(__name__)

API_BASE = "https://api.telegram.org"
DEFAULT_FILENAME = "image.jpg"


class BotApiFileFetcher:
    """Download message media through the Telegram Bot API."""

    def __init__(
        self,
        bot_token: str,
        session: Optional[aiohttp.ClientSession] = None,
        timeout_seconds: float = 20.0,
        api_base: str = API_BASE,
    ) -> None:
        self._bot_token = bot_token
        self._session = session
        self._timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self._api_base = api_base.rstrip("/")

    def _method_url(self, method: str) -> str:
        return f"{self._api_base}/bot{self._bot_token}/{method}"

    def _file_url(self, file_path: str) -> str:
        return f"{self._api_base}/file/bot{self._bot_token}/{file_path}"

    async def fetch(self, message: SourceMessage) -> tuple[bytes, str]:
        file_id = message.media_ref
        if not file_id:
            raise DownloadError("message has no file_id")
        try:
            if self._session is not None:
                return await self._fetch(self._session, str(file_id))
            async with aiohttp.ClientSession(timeout=self._timeout) as session:
                return await self._fetch(session, str(file_id))
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise DownloadError(str(exc)) from exc

    async def _fetch(self, session: aiohttp.ClientSession, file_id: str) -> tuple[bytes, str]:
        file_path = await self.resolve_file_path(session, file_id)
        async with session.get(self._file_url(file_path), timeout=self._timeout) as response:
            if response.status != 200:
                raise DownloadError(f"file download returned HTTP {response.status}")
            data = await response.read()
        return data, posixpath.basename(file_path) or DEFAULT_FILENAME

    async def resolve_file_path(self, session: aiohttp.ClientSession, file_id: str) -> str:
        """Resolve a file_id to the path used by the file endpoint."""

        async with session.get(
            self._method_url("getFile"),
            params={"file_id": file_id},
            timeout=self._timeout,
        ) as response:
            try:
                payload = await response.json(content_type=None)
            except ValueError as exc:
                raise DownloadError(f"getFile returned invalid JSON (HTTP {response.status})") from exc
        if not isinstance(payload, dict) or not payload.get("ok"):
            description = payload.get("description") if isinstance(payload, dict) else None
            raise DownloadError(f"getFile failed: {description or 'unknown error'}")
        file_path = (payload.get("result") or {}).get("file_path")
        if not file_path:
            raise DownloadError("getFile returned no file_path")
        return str(file_path)
