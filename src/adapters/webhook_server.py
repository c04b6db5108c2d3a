"""HTTP endpoint that receives Telegram Bot API updates (push mode).

Every POST is one independent invocation of the push handler. The response
is always ``ok`` once the body parsed, so Telegram does not redeliver an
update whose relay failed further down.
"""

from __future__ import annotations

import hmac
import json
import logging
import os
from typing import Optional

from aiohttp import web

from adapters.telegram_mapper import message_from_update
from core.push import PushRelayHandler

LOGGER = logging.getLogger(__name__)

SECRET_HEADER = "X-Telegram-Bot-Api-Secret-Token"
HANDLER_KEY = web.AppKey("push_handler", PushRelayHandler)


def _dump_update(path: str, raw: bytes) -> None:
    try:
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(path, "wb") as handle:
            handle.write(raw)
    except OSError as exc:
        LOGGER.debug("Could not write last update to %s: %s", path, exc)


def build_app(
    handler: PushRelayHandler,
    path: str = "/telegram",
    secret: str = "",
    dump_path: Optional[str] = None,
) -> web.Application:
    """Create the aiohttp application serving the update endpoint."""

    async def _handle_update(request: web.Request) -> web.Response:
        if secret:
            received = request.headers.get(SECRET_HEADER, "")
            if not hmac.compare_digest(received.encode(), secret.encode()):
                return web.Response(status=401, text="unauthorized")

        raw = await request.read()
        try:
            update = json.loads(raw or b"null")
        except ValueError:
            return web.Response(status=400, text="bad json")
        if not isinstance(update, dict):
            return web.Response(status=400, text="bad json")

        if dump_path:
            _dump_update(dump_path, raw)

        try:
            await request.app[HANDLER_KEY].handle(message_from_update(update))
        except Exception:
            LOGGER.exception("Error while relaying update %s", update.get("update_id"))
        return web.Response(text="ok")

    app = web.Application()
    app[HANDLER_KEY] = handler
    app.router.add_post(path, _handle_update)
    return app


async def start_server(app: web.Application, host: str, port: int) -> web.AppRunner:
    """Start serving ``app`` and return the runner used to stop it."""

    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, host, port)
    await site.start()
    LOGGER.info("Webhook endpoint listening on %s:%s", host, port)
    return runner
