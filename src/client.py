"""Telethon client factory for the pull relay.

The caller owns the lifecycle: ``app`` connects, authorizes, runs one export
and disconnects, so the session file is only held open for a single run.
"""

from __future__ import annotations

import logging
import os

from telethon import TelegramClient

from core.errors import ConfigError
from settings import AppSettings

LOGGER = logging.getLogger(__name__)


def build_client(settings: AppSettings) -> TelegramClient:
    """Create an unconnected client for the configured user session.

    ``SESSION_NAME`` defaults to ``var/albumrelay``, which Telethon stores as
    ``var/albumrelay.session``.
    """

    if not settings.api_id or not settings.api_hash:
        raise ConfigError("Missing API_ID or API_HASH in environment")

    directory = os.path.dirname(settings.session_name)
    if directory:
        os.makedirs(directory, exist_ok=True)

    LOGGER.info("Initializing Telegram client (session %s)", settings.session_name)
    return TelegramClient(settings.session_name, settings.api_id, settings.api_hash)
