# caption_worker/app/services/enricher.py
from __future__ import annotations

import logging
from typing import Optional

from caption_worker.app.errors import ApiError, FetchError, PersistError, PublishError
from caption_worker.app.models import EnrichResult, EnrichStatus, PhotoMetadata, encode_metadata
from caption_worker.app.services.broker import Broker, DeadLetterSink
from caption_worker.app.services.caption_api import CaptionService
from caption_worker.app.services.store import CaptionStore
from caption_worker.app.telemetry import Telemetry

log = logging.getLogger(__name__)


class Enricher:
    """
    Caption one record, then persist and republish it.

    Best-effort and not transactional: a persist failure still republishes,
    a publish failure leaves the stored caption in place. Both show up as
    EnrichStatus.PARTIAL with the step errors attached.
    """

    def __init__(
        self,
        caption_service: CaptionService,
        store: CaptionStore,
        broker: Broker,
        output_channel: str,
        telemetry: Telemetry,
        *,
        dead_letter: Optional[DeadLetterSink] = None,
        check_store: bool = False,
    ):
        self.caption_service = caption_service
        self.store = store
        self.broker = broker
        self.output_channel = output_channel
        self.telemetry = telemetry
        self.dead_letter = dead_letter
        self.check_store = check_store

    def _already_stored(self, metadata: PhotoMetadata) -> bool:
        if not self.check_store or not metadata.photo_id:
            return False
        try:
            return bool(self.store.get_caption(metadata.photo_id))
        except PersistError as e:
            log.warning(f"{e}; enriching anyway")
            return False

    def enrich(self, metadata: PhotoMetadata) -> EnrichResult:
        result = EnrichResult(photo_id=metadata.photo_id)

        if self._already_stored(metadata):
            log.info(f"Caption already stored for {metadata.photo_id}, skipping")
            self.telemetry.increment("enrich_skipped")
            result.status = EnrichStatus.SKIPPED
            return result.finish()

        self.telemetry.increment("enrich_total")
        try:
            caption = self.caption_service.enrich(metadata.photo_url)
        except (FetchError, ApiError) as e:
            log.error(f"Couldn't get caption from API for {metadata.photo_id}: {e}")
            result.add_error(e)
            self.telemetry.increment("enrich_failed")
            self.telemetry.set_error(f"{e.kind}: {e}")
            if self.dead_letter is not None:
                if self.dead_letter.send(e.kind, encode_metadata(metadata), str(e)):
                    self.telemetry.increment("dead_lettered")
            return self._finish(result, metadata)

        metadata.caption = caption
        result.caption = caption

        try:
            self.store.set_caption(metadata.photo_id, caption)
            result.persisted = True
        except PersistError as e:
            log.error(str(e))
            result.add_error(e)
            self.telemetry.increment("persist_failed")
            self.telemetry.set_error(f"{e.kind}: {e}")

        try:
            self.broker.publish(self.output_channel, encode_metadata(metadata))
            result.published = True
            self.telemetry.increment("published_total")
        except PublishError as e:
            log.error(str(e))
            result.add_error(e)
            self.telemetry.increment("publish_failed")
            self.telemetry.set_error(f"{e.kind}: {e}")

        return self._finish(result, metadata)

    def _finish(self, result: EnrichResult, metadata: PhotoMetadata) -> EnrichResult:
        result.finish()
        self.telemetry.log_json(
            "enrich_done",
            level="info" if result.status == EnrichStatus.ENRICHED else "error",
            photo_id=metadata.photo_id,
            chat_id=metadata.chat_id,
            status=result.status.value,
            persisted=result.persisted,
            published=result.published,
            errors=result.errors,
            duration_ms=int(result.latency_ms),
        )
        return result
