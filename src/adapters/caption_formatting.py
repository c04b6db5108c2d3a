"""Caption formatting for the Discord sink.

Keeping formatting here prevents drift between pull and push modes and keeps
relayed posts consistent regardless of where the album came from.
"""

from __future__ import annotations

import json
from typing import Optional

from core.config import CaptionConfig

# Discord rejects message content longer than this.
DISCORD_CONTENT_LIMIT = 2000
_ELLIPSIS = "…"


def format_caption(caption: str, config: CaptionConfig) -> Optional[str]:
    """Return the message content for a caption, or None when there is none."""

    text = caption.strip()
    if not text:
        return None

    label = config.label.strip()
    content = f"{label} {text}" if label else text

    limit = min(config.max_chars, DISCORD_CONTENT_LIMIT)
    if len(content) > limit:
        content = content[: limit - len(_ELLIPSIS)].rstrip() + _ELLIPSIS
    return content


def build_payload_json(caption: str, config: CaptionConfig) -> str:
    """Serialize the ``payload_json`` form field sent alongside the files."""

    return json.dumps({"content": format_caption(caption, config)}, ensure_ascii=False)
