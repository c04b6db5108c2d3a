"""Discord webhook relay adapter.

Implements the core RelayPort: one relay unit becomes one multipart POST with
a ``payload_json`` field and one file part per image, in unit order.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import ExitStack
from typing import Optional

import aiohttp

from adapters.caption_formatting import build_payload_json
from core.config import CaptionConfig
from core.errors import RelayError
from core.models import MediaItem, RelayUnit

LOGGER = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0


def file_field_names(items: tuple[MediaItem, ...]) -> list[str]:
    """Form field names for a unit's files: ``file`` alone, ``file1..N`` for albums."""

    if len(items) == 1:
        return ["file"]
    return [f"file{index}" for index in range(1, len(items) + 1)]


class DiscordWebhookRelay:
    """Send relay units to a Discord webhook."""

    def __init__(
        self,
        webhook_url: str,
        caption_config: CaptionConfig,
        session: Optional[aiohttp.ClientSession] = None,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self._webhook_url = webhook_url
        self._caption_config = caption_config
        self._session = session
        self._timeout = aiohttp.ClientTimeout(total=timeout_seconds)

    def build_form(self, unit: RelayUnit, stack: ExitStack) -> aiohttp.FormData:
        """Build the multipart body; file handles are closed by ``stack``."""

        form = aiohttp.FormData()
        form.add_field(
            "payload_json",
            build_payload_json(unit.caption, self._caption_config),
            content_type="application/json",
        )
        for name, item in zip(file_field_names(unit.items), unit.items):
            handle = stack.enter_context(open(item.path, "rb"))
            form.add_field(name, handle, filename=item.filename)
        return form

    async def send_unit(self, unit: RelayUnit) -> None:
        """POST one unit; raises RelayError on transport or HTTP failure."""

        if not unit.items:
            return
        try:
            with ExitStack() as stack:
                form = self.build_form(unit, stack)
                if self._session is not None:
                    await self._post(self._session, form)
                else:
                    async with aiohttp.ClientSession(timeout=self._timeout) as session:
                        await self._post(session, form)
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as exc:
            raise RelayError(f"webhook request failed: {exc}") from exc

    async def _post(self, session: aiohttp.ClientSession, form: aiohttp.FormData) -> None:
        async with session.post(self._webhook_url, data=form, timeout=self._timeout) as response:
            if response.status >= 400:
                body = await response.text()
                raise RelayError(
                    f"Discord webhook error {response.status}: {body[:300]}",
                    status=response.status,
                    body=body,
                )
            LOGGER.debug("Webhook accepted unit with status %s", response.status)
