# caption_worker/app/services/broker.py
from __future__ import annotations

import json
import logging
import threading
from datetime import datetime, timezone
from typing import Iterator, Optional, Union

import redis

from caption_worker.app.config import Settings
from caption_worker.app.errors import PublishError
from caption_worker.app.telemetry import Telemetry

log = logging.getLogger(__name__)

SUBSCRIBE_CONFIRM_TIMEOUT_S = 10.0
POLL_INTERVAL_S = 1.0
RESUBSCRIBE_DELAY_S = 2.0


def make_redis_client(settings: Settings) -> redis.Redis:
    # raw bytes: pub/sub payloads are decoded per message by decode_metadata,
    # so a non-utf-8 payload is one dropped message, not a dead subscriber
    host, port = settings.redis_host_port()
    return redis.Redis(
        host=host,
        port=port,
        password=settings.WORKER_REDIS_PASSWD or None,
        db=settings.WORKER_REDIS_DB,
        decode_responses=False,
    )


class Broker:
    """
    Pub/sub side of redis: one subscription stream plus publish.

    subscribe() polls with a short timeout so close() from another thread ends it.
    Redis errors while subscribed are logged and the subscription is retried
    every resubscribe_delay seconds until close().
    """

    def __init__(
        self,
        client: redis.Redis,
        telemetry: Optional[Telemetry] = None,
        resubscribe_delay: float = RESUBSCRIBE_DELAY_S,
    ):
        self.client = client
        self.telemetry = telemetry
        self.resubscribe_delay = resubscribe_delay
        self._closed = threading.Event()
        self._subscribed = threading.Event()

    @property
    def subscribed(self) -> bool:
        return self._subscribed.is_set()

    def ping(self) -> bool:
        try:
            pong = self.client.ping()
        except redis.RedisError as e:
            log.error(f"Couldn't ping redis server {e}")
            return False
        log.debug(f"got pong from redis {pong}")
        return True

    def subscribe(self, channel: str) -> Iterator[Union[str, bytes]]:
        while not self._closed.is_set():
            pubsub = self.client.pubsub(ignore_subscribe_messages=False)
            try:
                pubsub.subscribe(channel)
                confirm = pubsub.get_message(timeout=SUBSCRIBE_CONFIRM_TIMEOUT_S)
                if confirm is None or confirm.get("type") not in ("subscribe", b"subscribe"):
                    log.error(f"Couldn't subscribe to redis channel {channel}: no confirmation")
                else:
                    log.debug(f"subscribed to redis channel {channel}: {confirm}")
                self._subscribed.set()

                while not self._closed.is_set():
                    message = pubsub.get_message(timeout=POLL_INTERVAL_S)
                    if message is None or message.get("type") not in ("message", b"message"):
                        continue
                    log.debug(f"Got message from redis channel {channel}: {message['data']!r:.200}")
                    yield message["data"]
            except redis.RedisError as e:
                self._subscribed.clear()
                log.error(
                    f"Redis subscription to {channel} failed: {e}; "
                    f"resubscribing in {self.resubscribe_delay}s"
                )
                if self.telemetry is not None:
                    self.telemetry.increment("subscribe_errors")
                    self.telemetry.set_error(f"subscribe: {e}")
                self._closed.wait(self.resubscribe_delay)
            finally:
                self._subscribed.clear()
                try:
                    pubsub.close()
                except redis.RedisError as e:
                    log.debug(f"pubsub close failed: {e}")

    def publish(self, channel: str, payload: str) -> int:
        try:
            return self.client.publish(channel, payload)
        except redis.RedisError as e:
            raise PublishError(
                f"Couldn't publish photo metadata to redis channel {channel}: {e}"
            ) from e

    def close(self) -> None:
        self._closed.set()


class DeadLetterSink:
    """Opt-in sink: failed messages are RPUSHed as JSON onto a redis list."""

    def __init__(self, client: redis.Redis, key: str):
        self.client = client
        self.key = key

    def send(self, kind: str, payload: Union[str, bytes, None], error: str) -> bool:
        if isinstance(payload, bytes):
            payload = payload.decode("utf-8", errors="replace")
        entry = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "kind": kind,
            "error": error,
            "payload": payload,
        }
        try:
            self.client.rpush(self.key, json.dumps(entry, ensure_ascii=False))
            return True
        except redis.RedisError as e:
            log.error(f"Couldn't dead-letter {kind} failure to {self.key}: {e}")
            return False


def make_dead_letter(client: redis.Redis, key: Optional[str]) -> Optional[DeadLetterSink]:
    if not key:
        return None
    return DeadLetterSink(client, key)
