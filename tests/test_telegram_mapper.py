from __future__ import annotations

from datetime import datetime, timezone
from types import SimpleNamespace

from adapters.telegram_mapper import build_source_message, message_from_update
from core.classifier import is_image
from core.models import MEDIA_DOCUMENT, MEDIA_PHOTO


def _telethon_message(**overrides):
    data = {
        "id": 42,
        "date": datetime(2024, 5, 1, tzinfo=timezone.utc),
        "message": "",
        "photo": None,
        "document": None,
        "grouped_id": None,
    }
    data.update(overrides)
    return SimpleNamespace(**data)


def test_build_source_message_maps_photo_album_member() -> None:
    raw = _telethon_message(photo=object(), grouped_id=13571113, message="caption")

    message = build_source_message(raw)

    assert message.message_id == 42
    assert message.media_kind == MEDIA_PHOTO
    assert message.group_id == "13571113"
    assert message.caption == "caption"
    assert message.media_ref is raw
    assert is_image(message)


def test_build_source_message_maps_documents_and_text() -> None:
    document = _telethon_message(document=SimpleNamespace(mime_type="image/webp"), message=None)
    text = _telethon_message(message="hello")

    doc_message = build_source_message(document)
    text_message = build_source_message(text)

    assert (doc_message.media_kind, doc_message.mime_type) == (MEDIA_DOCUMENT, "image/webp")
    assert doc_message.caption == ""
    assert text_message.media_kind is None
    assert not is_image(text_message)


def test_message_from_update_prefers_channel_post_and_largest_photo() -> None:
    update = {
        "update_id": 1,
        "channel_post": {
            "message_id": 77,
            "date": 1714521600,
            "caption": "hi",
            "media_group_id": "9988",
            "photo": [
                {"file_id": "small", "file_size": 100},
                {"file_id": "large", "file_size": 9000},
                {"file_id": "medium", "file_size": 800},
            ],
        },
        "message": {"message_id": 1},
    }

    message = message_from_update(update)

    assert message is not None
    assert message.message_id == 77
    assert message.media_kind == MEDIA_PHOTO
    assert message.media_ref == "large"
    assert message.group_id == "9988"
    assert message.caption == "hi"
    assert message.date == datetime(2024, 5, 1, tzinfo=timezone.utc)


def test_message_from_update_maps_documents_and_empty_updates() -> None:
    update = {
        "message": {
            "message_id": 5,
            "document": {"file_id": "doc", "mime_type": "image/png"},
        }
    }

    message = message_from_update(update)

    assert message is not None
    assert (message.media_kind, message.mime_type, message.media_ref) == (MEDIA_DOCUMENT, "image/png", "doc")
    assert message.group_id is None
    assert message_from_update({"update_id": 3, "edited_message": {}}) is None
