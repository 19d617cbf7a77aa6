# caption_worker/app/dispatcher.py
from __future__ import annotations

import logging
import queue
import threading
from typing import Callable, Iterable, List, Optional, Set, Union

from caption_worker.app.errors import DecodeError
from caption_worker.app.models import (
    Disposition,
    EnrichResult,
    PhotoMetadata,
    decode_metadata,
)
from caption_worker.app.services.broker import DeadLetterSink
from caption_worker.app.services.enricher import Enricher
from caption_worker.app.telemetry import Telemetry

log = logging.getLogger(__name__)

_STOP = object()


class SingleFlight:
    """Set of keys with an enrichment in flight. try_acquire() is atomic."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._keys: Set[str] = set()

    def try_acquire(self, key: str) -> bool:
        with self._lock:
            if key in self._keys:
                return False
            self._keys.add(key)
            return True

    def release(self, key: str) -> None:
        with self._lock:
            self._keys.discard(key)

    def __len__(self) -> int:
        with self._lock:
            return len(self._keys)


class MessageDispatcher:
    """
    Decodes inbound payloads and feeds eligible records to the Enricher.

    Gates, in order:
      * decode failure -> dropped
      * caption already set -> skipped (stops the republish feedback loop)
      * photo_id already in flight -> dropped (single_flight=True only)

    pool_size > 0 runs a fixed pool fed by a bounded queue; a full queue blocks
    handle_message() (backpressure on the subscription), or rejects after
    put_timeout seconds when one is set. pool_size == 0 starts one thread per
    message with no bound.
    """

    def __init__(
        self,
        enricher: Enricher,
        telemetry: Telemetry,
        *,
        pool_size: int = 8,
        queue_maxsize: int = 64,
        put_timeout: Optional[float] = None,
        single_flight: bool = True,
        dead_letter: Optional[DeadLetterSink] = None,
        on_result: Optional[Callable[[EnrichResult], None]] = None,
    ):
        self.enricher = enricher
        self.telemetry = telemetry
        self.pool_size = max(0, pool_size)
        self.put_timeout = put_timeout
        self.single_flight = SingleFlight() if single_flight else None
        self.dead_letter = dead_letter
        self.on_result = on_result

        self._queue: "queue.Queue" = queue.Queue(maxsize=max(0, queue_maxsize))
        self._workers: List[threading.Thread] = []
        self._spawned: Set[threading.Thread] = set()
        self._spawned_lock = threading.Lock()
        self._started = False
        self._start_lock = threading.Lock()
        self._stopping = threading.Event()

    # --- lifecycle -------------------------------------------------------------
    def start(self) -> None:
        with self._start_lock:
            if self._started or self.pool_size == 0:
                self._started = True
                return
            for i in range(self.pool_size):
                t = threading.Thread(
                    target=self._worker_loop, name=f"caption-worker-{i}", daemon=True
                )
                t.start()
                self._workers.append(t)
            self._started = True
            log.info(f"Started {self.pool_size} caption workers")

    def stop(self) -> None:
        """Stop taking new messages; accepted work still completes."""
        self._stopping.set()

    def drain(self) -> None:
        """Block until every accepted message has been processed."""
        if self.pool_size:
            self._queue.join()
            return
        while True:
            with self._spawned_lock:
                pending = list(self._spawned)
            if not pending:
                return
            for t in pending:
                t.join()

    def shutdown(self) -> None:
        self.stop()
        self.drain()
        for _ in self._workers:
            self._queue.put(_STOP)
        for t in self._workers:
            t.join()
        self._workers.clear()
        log.info("Caption workers stopped")

    @property
    def queue_depth(self) -> int:
        return self._queue.qsize()

    @property
    def in_flight(self) -> int:
        return len(self.single_flight) if self.single_flight is not None else 0

    # --- intake ----------------------------------------------------------------
    def run(self, stream: Iterable[Union[str, bytes]]) -> None:
        """Consume payloads until the stream ends or stop() is called."""
        self.start()
        for payload in stream:
            if self._stopping.is_set():
                break
            self.handle_message(payload)

    def handle_message(self, payload: Union[str, bytes]) -> Disposition:
        self.telemetry.increment("messages_total")
        try:
            metadata = decode_metadata(payload)
        except DecodeError as e:
            log.error(str(e))
            self.telemetry.increment("decode_failed")
            self.telemetry.set_error(f"{e.kind}: {e}")
            self._dead_letter(e.kind, payload, str(e))
            return Disposition.DROPPED_DECODE

        log.debug(f"Got metadata from message {metadata!r}")

        if not metadata.needs_caption:
            self.telemetry.increment("skipped_captioned")
            return Disposition.SKIPPED_CAPTIONED

        return self._submit(metadata, payload)

    def _submit(self, metadata: PhotoMetadata, payload: Union[str, bytes]) -> Disposition:
        key = metadata.photo_id
        claimed = False
        if self.single_flight is not None and key:
            if not self.single_flight.try_acquire(key):
                log.info(f"Enrichment already in flight for {key}, dropping duplicate")
                self.telemetry.increment("duplicates_suppressed")
                return Disposition.DUPLICATE_IN_FLIGHT
            claimed = True

        if not self._started:
            self.start()

        if self.pool_size == 0:
            t = threading.Thread(target=self._spawned_task, args=(metadata, claimed), daemon=True)
            with self._spawned_lock:
                self._spawned.add(t)
            t.start()
            return Disposition.QUEUED

        try:
            self._queue.put((metadata, claimed), timeout=self.put_timeout)
        except queue.Full:
            if claimed:
                self.single_flight.release(key)
            msg = f"Worker queue full, rejecting {key or 'message'}"
            log.warning(msg)
            self.telemetry.increment("rejected_backpressure")
            self.telemetry.set_error(msg)
            self._dead_letter("backpressure", payload, msg)
            return Disposition.REJECTED_BACKPRESSURE
        return Disposition.QUEUED

    # --- workers ---------------------------------------------------------------
    def _worker_loop(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is _STOP:
                    return
                metadata, claimed = item
                self._process(metadata, claimed)
            finally:
                self._queue.task_done()

    def _spawned_task(self, metadata: PhotoMetadata, claimed: bool) -> None:
        try:
            self._process(metadata, claimed)
        finally:
            with self._spawned_lock:
                self._spawned.discard(threading.current_thread())

    def _process(self, metadata: PhotoMetadata, claimed: bool) -> None:
        try:
            result = self.enricher.enrich(metadata)
            if self.on_result is not None:
                self.on_result(result)
        except Exception as e:
            # keep the worker thread alive; the message is lost
            log.exception(f"Unexpected failure enriching {metadata.photo_id}: {e}")
            self.telemetry.increment("enrich_failed")
            self.telemetry.set_error(f"unexpected: {e}")
        finally:
            if claimed:
                self.single_flight.release(metadata.photo_id)

    def _dead_letter(self, kind: str, payload: Union[str, bytes], error: str) -> None:
        if self.dead_letter is None:
            return
        if self.dead_letter.send(kind, payload, error):
            self.telemetry.increment("dead_lettered")
