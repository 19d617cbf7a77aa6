# caption_worker/app/services/store.py
from __future__ import annotations

import logging

import redis

from caption_worker.app.errors import PersistError

log = logging.getLogger(__name__)

CAPTION_FIELD = "caption"


class CaptionStore:
    """Keyed store: one redis hash per photo_id holding at least a `caption` field."""

    def __init__(self, client: redis.Redis):
        self.client = client

    def set_field(self, key: str, field: str, value: str) -> None:
        try:
            self.client.hset(key, field, value)
        except redis.RedisError as e:
            raise PersistError(f"Couldn't set {field} in redis for {key}: {e}") from e

    def set_caption(self, photo_id: str, caption: str) -> None:
        self.set_field(photo_id, CAPTION_FIELD, caption)

    def get_caption(self, photo_id: str) -> str:
        """Stored caption for photo_id, or "" when none is stored."""
        try:
            value = self.client.hget(photo_id, CAPTION_FIELD)
        except redis.RedisError as e:
            raise PersistError(f"Couldn't read caption from redis for {photo_id}: {e}") from e
        if value is None:
            return ""
        if isinstance(value, bytes):
            return value.decode("utf-8", errors="replace")
        return value
