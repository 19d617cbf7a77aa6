# caption_worker/app/context.py
"""Explicit wiring: one WorkerContext per process, handed to constructors."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Optional

import redis
import requests

from caption_worker.app.config import Settings
from caption_worker.app.dispatcher import MessageDispatcher
from caption_worker.app.services.broker import Broker, make_dead_letter, make_redis_client
from caption_worker.app.services.caption_api import CaptionService
from caption_worker.app.services.enricher import Enricher
from caption_worker.app.services.store import CaptionStore
from caption_worker.app.telemetry import Telemetry

log = logging.getLogger(__name__)

SUBSCRIBER_JOIN_TIMEOUT_S = 10.0


@dataclass
class WorkerContext:
    settings: Settings
    redis: redis.Redis
    session: requests.Session = field(default_factory=requests.Session)
    telemetry: Optional[Telemetry] = None

    def __post_init__(self) -> None:
        if self.telemetry is None:
            self.telemetry = Telemetry(
                log_dir=self.settings.LOG_DIR or None,
                max_log_mb=self.settings.WORKER_LOG_MAX_MB,
            )

    def close(self) -> None:
        self.session.close()
        self.redis.close()


def build_context(settings: Settings) -> WorkerContext:
    """Validate config and create client handles. Raises ConfigError."""
    settings.require_caption_key()
    return WorkerContext(settings=settings, redis=make_redis_client(settings))


@dataclass
class Worker:
    context: WorkerContext
    broker: Broker
    dispatcher: MessageDispatcher
    subscriber: Optional[threading.Thread] = field(default=None, init=False)

    def run(self) -> None:
        """Subscribe and dispatch until close() is called."""
        self.broker.ping()
        channel = self.context.settings.WORKER_REDIS_CHANNEL
        self.dispatcher.run(self.broker.subscribe(channel))

    def start(self) -> threading.Thread:
        """Run the subscriber on a background thread."""
        t = threading.Thread(target=self.run, name="caption-subscriber", daemon=True)
        t.start()
        self.subscriber = t
        return t

    def close(self, timeout: float = SUBSCRIBER_JOIN_TIMEOUT_S) -> None:
        # intake must be finished before the pool gets its stop sentinels
        self.broker.close()
        if self.subscriber is not None:
            self.subscriber.join(timeout)
            if self.subscriber.is_alive():
                log.warning(f"Subscriber thread still running after {timeout}s")
        self.dispatcher.shutdown()


def build_worker(context: WorkerContext) -> Worker:
    s = context.settings
    dead_letter = make_dead_letter(context.redis, s.WORKER_DEAD_LETTER_KEY)
    broker = Broker(context.redis, context.telemetry)
    caption_service = CaptionService(
        s.WORKER_CAPTION_URL,
        s.require_caption_key(),
        session=context.session,
        fetch_timeout=s.fetch_timeout,
        api_timeout=s.caption_timeout,
        max_image_bytes=s.MAX_IMAGE_BYTES,
    )
    enricher = Enricher(
        caption_service,
        CaptionStore(context.redis),
        broker,
        s.output_channel,
        context.telemetry,
        dead_letter=dead_letter,
        check_store=bool(s.WORKER_CHECK_STORE),
    )
    dispatcher = MessageDispatcher(
        enricher,
        context.telemetry,
        pool_size=s.WORKER_POOL_SIZE,
        queue_maxsize=s.WORKER_QUEUE_MAXSIZE,
        put_timeout=s.queue_put_timeout,
        single_flight=bool(s.WORKER_SINGLE_FLIGHT),
        dead_letter=dead_letter,
    )
    return Worker(context=context, broker=broker, dispatcher=dispatcher)
