"""Core configuration dataclasses.

We keep config parsing outside the core, but these dataclasses define the
shape the core expects so adapters and app layers can build safely.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass(frozen=True)
class RelayConfig:
    """Scan and relay settings shared by pull and push modes."""

    max_bytes: int
    page_size: int = 100
    album_max_files: int = 10
    since: Optional[datetime] = None
    unit_limit: int = 0


@dataclass(frozen=True)
class RateLimitConfig:
    """Sliding-window throttle for outbound relay units."""

    limit: int = 5
    period_seconds: float = 2.0
    poll_seconds: float = 0.2


@dataclass(frozen=True)
class PushConfig:
    """Durable album buffering used by the stateless push handler."""

    store_dir: str
    idle_seconds: float = 2.0
    lock_timeout_seconds: float = 10.0


@dataclass(frozen=True)
class CaptionConfig:
    """Caption rendering consumed by the sink adapter."""

    label: str = "**Caption:**"
    max_chars: int = 2000
