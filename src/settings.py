"""Configuration loading for albumrelay.

Secrets and deployment values come from the environment (``.env`` via
python-dotenv); tunables live in an optional ``config.json`` with a flat,
user-friendly schema. Everything is read once into an immutable
``AppSettings`` value that the entry point hands to each component.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from typing import Mapping, Optional

from dotenv import load_dotenv

from core.config import CaptionConfig, PushConfig, RateLimitConfig
from core.errors import ConfigError

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))

# config.json sits next to .env; ALBUMRELAY_CONFIG points elsewhere.
DEFAULT_CONFIG_PATH = os.path.join(PROJECT_ROOT, "config.json")

# Runtime state (checkpoint, downloads, album records) defaults to var/.
DEFAULT_VAR_DIR = os.path.join(PROJECT_ROOT, "var")

_MB = 1024 * 1024


@dataclass(frozen=True)
class AppSettings:
    """Everything the entry point needs, resolved once at startup."""

    api_id: Optional[int]
    api_hash: str
    session_name: str
    discord_webhook_url: str
    max_bytes: int
    telegram_token: str
    webhook_secret: str
    export_channel: Optional[str]
    page_size: int
    album_max_files: int
    checkpoint_path: str
    work_dir: str
    rate_limit: RateLimitConfig
    push: PushConfig
    push_host: str
    push_port: int
    push_path: str
    dump_last_update: Optional[str]
    caption: CaptionConfig
    logging: dict = field(default_factory=dict)

    def require_pull_credentials(self) -> None:
        """Fail fast on missing credentials to avoid an ambiguous login prompt."""

        if not self.api_id or not self.api_hash:
            raise ConfigError("Missing API_ID or API_HASH in environment")
        self.require_webhook()

    def require_push_credentials(self) -> None:
        if not self.telegram_token:
            raise ConfigError("Missing TELEGRAM_TOKEN in environment")
        self.require_webhook()

    def require_webhook(self) -> None:
        if not self.discord_webhook_url:
            raise ConfigError("Missing DISCORD_WEBHOOK_URL in environment")


def _load_json_config(path: str) -> dict:
    """Load config.json; a missing file means defaults everywhere."""

    if not os.path.exists(path):
        return {}
    try:
        with open(path, "r", encoding="utf-8") as handle:
            data = json.load(handle)
    except (OSError, ValueError) as exc:
        raise ConfigError(f"Cannot read config file {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a JSON object")
    return data


def _resolve_path(value: str) -> str:
    if os.path.isabs(value):
        return value
    return os.path.join(PROJECT_ROOT, value)


def _int_env(env: Mapping[str, str], name: str, default: Optional[int]) -> Optional[int]:
    raw = (env.get(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from exc


def load_settings(
    config_path: Optional[str] = None,
    env: Optional[Mapping[str, str]] = None,
) -> AppSettings:
    """Build AppSettings from the environment and the optional JSON config."""

    if env is None:
        load_dotenv()
        env = os.environ

    path = config_path or env.get("ALBUMRELAY_CONFIG") or DEFAULT_CONFIG_PATH
    config = _load_json_config(path)

    # Relay scan settings.
    relay = config.get("relay", {})
    var_dir = _resolve_path(relay.get("var_dir", DEFAULT_VAR_DIR))
    checkpoint_path = _resolve_path(relay.get("checkpoint_path", os.path.join(var_dir, "checkpoint.txt")))
    work_dir = _resolve_path(relay.get("work_dir", os.path.join(var_dir, "tmp")))

    # Outbound throttle: Discord webhooks allow short bursts only.
    rate = config.get("rate_limit", {})
    rate_limit = RateLimitConfig(
        limit=int(rate.get("limit", 5)),
        period_seconds=float(rate.get("period_seconds", 2.0)),
        poll_seconds=float(rate.get("poll_seconds", 0.2)),
    )

    # Push-mode album records and HTTP endpoint.
    push = config.get("push", {})
    push_config = PushConfig(
        store_dir=_resolve_path(push.get("store_dir", os.path.join(var_dir, "relay"))),
        idle_seconds=max(1.0, float(push.get("idle_seconds", 2))),
        lock_timeout_seconds=float(push.get("lock_timeout_seconds", 10)),
    )
    dump_last_update = push.get("dump_last_update")

    caption = config.get("caption", {})
    caption_config = CaptionConfig(
        label=str(caption.get("label", "**Caption:**")),
        max_chars=int(caption.get("max_chars", 2000)),
    )

    return AppSettings(
        api_id=_int_env(env, "API_ID", None),
        api_hash=env.get("API_HASH", ""),
        session_name=env.get("SESSION_NAME") or os.path.join(var_dir, "albumrelay"),
        discord_webhook_url=env.get("DISCORD_WEBHOOK_URL", ""),
        max_bytes=int(_int_env(env, "DISCORD_MAX_MB", 8)) * _MB,
        telegram_token=env.get("TELEGRAM_TOKEN", ""),
        webhook_secret=env.get("WEBHOOK_SECRET", ""),
        export_channel=env.get("EXPORT_CHANNEL") or None,
        page_size=int(relay.get("page_size", 100)),
        album_max_files=int(relay.get("album_max_files", 10)),
        checkpoint_path=checkpoint_path,
        work_dir=work_dir,
        rate_limit=rate_limit,
        push=push_config,
        push_host=str(push.get("host", "0.0.0.0")),
        push_port=int(push.get("port", 8080)),
        push_path=str(push.get("path", "/telegram")),
        dump_last_update=_resolve_path(dump_last_update) if dump_last_update else None,
        caption=caption_config,
        logging=config.get("logging", {}),
    )
