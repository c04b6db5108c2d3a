"""Application entry point for the album relay."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import signal
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from typing import Optional

import aiohttp
from art import tprint

from adapters.bot_api_files import BotApiFileFetcher
from adapters.checkpoint_store import FileCheckpointStore
from adapters.discord_webhook import DiscordWebhookRelay
from adapters.group_store import FileGroupStore
from adapters.telegram_source import TelethonMessageSource
from adapters.webhook_server import build_app, start_server
from client import build_client
from core.cancellation import CancellationToken
from core.config import RelayConfig
from core.engine import PullRelayEngine
from core.errors import ConfigError, SourceError
from core.history import locate_start
from core.push import PushRelayHandler
from core.rate_limiter import RateLimiter
from get_session import authorize
from settings import PROJECT_ROOT, AppSettings, load_settings

NAME = "ALBUMRELAY"
FONT = "tarty-1"

LOGGER = logging.getLogger(__name__)


def _print_banner() -> None:
    tprint(NAME, FONT, space=1)


DEFAULT_REDACT_ENV = ("DISCORD_WEBHOOK_URL", "TELEGRAM_TOKEN", "API_HASH", "WEBHOOK_SECRET")

# Third-party loggers that drown the relay output at INFO.
DEFAULT_LOGGER_LEVELS = {"telethon": "WARNING", "aiohttp.access": "WARNING"}

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"


class _RedactingFormatter(logging.Formatter):
    """Mask secret values (webhook URL, bot token) wherever they end up in a record."""

    def __init__(self, secrets: list[str]) -> None:
        super().__init__(fmt=LOG_FORMAT, datefmt=LOG_DATEFMT)
        # Longest first so a token inside a URL does not leave a partial match.
        self._secrets = sorted({secret for secret in secrets if secret}, key=len, reverse=True)

    def format(self, record: logging.LogRecord) -> str:
        text = super().format(record)
        for secret in self._secrets:
            text = text.replace(secret, "***")
        return text


def _redaction_values(redact: dict) -> list[str]:
    if not redact.get("enabled", True):
        return []
    return [os.getenv(name) or "" for name in redact.get("patterns", DEFAULT_REDACT_ENV)]


def _log_file_handler(file_cfg: dict) -> RotatingFileHandler:
    path = file_cfg.get("path", "logs/albumrelay.log")
    if not os.path.isabs(path):
        path = os.path.join(PROJECT_ROOT, path)
    os.makedirs(os.path.dirname(path), exist_ok=True)
    return RotatingFileHandler(
        path,
        maxBytes=int(file_cfg.get("max_bytes", 5 * 1024 * 1024)),
        backupCount=int(file_cfg.get("backup_count", 5)),
        encoding="utf-8",
    )


def _configure_logging(settings: AppSettings) -> None:
    config = settings.logging or {}
    if not config.get("enabled", True):
        # Section disabled: plain INFO output.
        logging.basicConfig(level=logging.INFO, format=LOG_FORMAT, datefmt=LOG_DATEFMT)
        return
    level = getattr(logging, str(config.get("level", "INFO")).upper(), logging.INFO)

    handlers: list[logging.Handler] = []
    if config.get("console", True):
        handlers.append(logging.StreamHandler())
    file_cfg = config.get("file", {})
    if file_cfg.get("enabled", False):
        handlers.append(_log_file_handler(file_cfg))
    if not handlers:
        return

    formatter = _RedactingFormatter(_redaction_values(config.get("redact", {})))
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
    logging.basicConfig(level=level, handlers=handlers)

    overrides = dict(DEFAULT_LOGGER_LEVELS)
    overrides.update(config.get("loggers", {}))
    for name, logger_level in overrides.items():
        quiet = getattr(logging, str(logger_level).upper(), logging.WARNING)
        logging.getLogger(name).setLevel(max(level, quiet))


def parse_since(raw: Optional[str]) -> Optional[datetime]:
    """Parse ``--since`` as a unix timestamp or an ISO date/datetime (UTC if naive)."""

    if not raw:
        return None
    value = raw.strip()
    if value.isdigit():
        return datetime.fromtimestamp(int(value), tz=timezone.utc)
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError as exc:
        raise ConfigError(f"--since must be a unix timestamp or ISO date, got {raw!r}") from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _install_signal_handlers(callback) -> None:
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, callback)
        except (NotImplementedError, RuntimeError):
            signal.signal(signum, lambda *_: callback())


def _channel_ref(channel: str):
    # Numeric ids (e.g. -100123...) must reach Telethon as ints.
    stripped = channel.strip()
    if stripped.lstrip("-").isdigit():
        return int(stripped)
    return stripped


async def _export(settings: AppSettings, args: argparse.Namespace) -> int:
    settings.require_pull_credentials()
    channel = args.channel or settings.export_channel
    if not channel:
        raise ConfigError("Usage: albumrelay export --channel=@username [--since=2025-01-01] [--limit=1000]")
    since = parse_since(args.since)

    cancel = CancellationToken()
    _install_signal_handlers(cancel.cancel)

    checkpoint = FileCheckpointStore(args.checkpoint or settings.checkpoint_path)
    relay_config = RelayConfig(
        max_bytes=settings.max_bytes,
        page_size=settings.page_size,
        album_max_files=settings.album_max_files,
        since=since,
        unit_limit=max(0, args.limit or 0),
    )

    client = build_client(settings)
    await client.connect()
    try:
        await authorize(client)
        entity = await client.get_entity(_channel_ref(channel))
        source = TelethonMessageSource(client, entity)

        # Explicit resume id wins over the stored checkpoint.
        if args.start_id is not None:
            start_id = max(0, args.start_id)
            LOGGER.info("Resuming from explicit start id %s", start_id)
        else:
            start_id = checkpoint.load()
            if start_id:
                LOGGER.info("Resuming from checkpoint %s (%s)", start_id, checkpoint.path)
            else:
                start_id = await locate_start(source, since, settings.page_size)

        async with aiohttp.ClientSession() as session:
            engine = PullRelayEngine(
                source=source,
                relay=DiscordWebhookRelay(settings.discord_webhook_url, settings.caption, session=session),
                checkpoint=checkpoint,
                limiter=RateLimiter(settings.rate_limit, cancel),
                config=relay_config,
                work_dir=settings.work_dir,
                cancel=cancel,
            )
            stats = await engine.run(start_id)
    finally:
        await client.disconnect()

    print(f"Done. Relayed units: {stats.units_dispatched}, files sent: {stats.files_sent}, checkpoint: {stats.checkpoint}")
    return 0


async def _serve(settings: AppSettings, args: argparse.Namespace) -> int:
    settings.require_push_credentials()

    stop = asyncio.Event()
    _install_signal_handlers(stop.set)

    relay_config = RelayConfig(max_bytes=settings.max_bytes, album_max_files=settings.album_max_files)
    async with aiohttp.ClientSession() as session:
        handler = PushRelayHandler(
            fetcher=BotApiFileFetcher(settings.telegram_token, session=session),
            store=FileGroupStore(settings.push, album_max_files=settings.album_max_files),
            relay=DiscordWebhookRelay(settings.discord_webhook_url, settings.caption, session=session),
            config=relay_config,
            tmp_dir=os.path.join(settings.push.store_dir, "tmp"),
            limiter=RateLimiter(settings.rate_limit),
        )
        app = build_app(
            handler,
            path=settings.push_path,
            secret=settings.webhook_secret,
            dump_path=settings.dump_last_update,
        )
        runner = await start_server(app, args.host or settings.push_host, args.port or settings.push_port)
        try:
            await stop.wait()
        finally:
            await runner.cleanup()
            LOGGER.info("Webhook endpoint stopped")
    return 0


async def _login(settings: AppSettings) -> int:
    client = build_client(settings)
    await client.connect()
    try:
        await authorize(client)
    finally:
        await client.disconnect()
    return 0


def main(argv: Optional[list[str]] = None) -> None:
    parser = argparse.ArgumentParser(prog="albumrelay")
    parser.add_argument("--config", help="Path to config.json")
    subparsers = parser.add_subparsers(dest="command")

    export = subparsers.add_parser("export", help="Relay channel history to the webhook")
    export.add_argument("--channel", help="Channel username (@name) or numeric id")
    export.add_argument("--since", help="Only relay messages at or after this date or unix time")
    export.add_argument("--limit", type=int, default=0, help="Stop after this many relay units (0 = no limit)")
    export.add_argument("--start-id", type=int, default=None, help="Resume after this message id")
    export.add_argument("--checkpoint", help="Checkpoint file path override")

    serve = subparsers.add_parser("serve", help="Receive Bot API updates over HTTP")
    serve.add_argument("--host", default=None)
    serve.add_argument("--port", type=int, default=None)

    subparsers.add_parser("login", help="Authorize the Telegram session")

    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help()
        return

    try:
        settings = load_settings(args.config)
        _configure_logging(settings)
        _print_banner()
        if args.command == "export":
            code = asyncio.run(_export(settings, args))
        elif args.command == "serve":
            code = asyncio.run(_serve(settings, args))
        else:
            code = asyncio.run(_login(settings))
    except ConfigError as exc:
        print(f"Config error: {exc}", file=sys.stderr)
        raise SystemExit(1)
    except SourceError as exc:
        LOGGER.error("Telegram request failed before relaying started: %s", exc)
        raise SystemExit(1)
    raise SystemExit(code)


if __name__ == "__main__":
    main()
