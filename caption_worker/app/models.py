# caption_worker/app/models.py
from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator, model_validator

from caption_worker.app.errors import DecodeError


class PhotoMetadata(BaseModel):
    """
    Wire record carried on the pub/sub channel, inbound and outbound.

    Missing keys decode to zero values; an empty caption means "not yet enriched".
    Types are strict: "5" is not a chat_id and "yes" is not a bool.
    """

    model_config = ConfigDict(extra="ignore", strict=True)

    chat_id: int = 0
    photo_url: str = ""
    caption: str = ""
    styled_url: str = ""
    published: bool = False
    photo_id: str = ""

    @field_validator("photo_url", "caption", "styled_url", "photo_id", mode="before")
    @classmethod
    def _null_as_empty(cls, v: Any) -> Any:
        return "" if v is None else v

    @property
    def needs_caption(self) -> bool:
        return self.caption == ""


def decode_metadata(payload: Union[str, bytes]) -> PhotoMetadata:
    try:
        return PhotoMetadata.model_validate_json(payload)
    except ValidationError as e:
        raise DecodeError(f"Couldn't decode JSON metadata: {e.error_count()} error(s): {payload!r:.200}") from e


def encode_metadata(metadata: PhotoMetadata) -> str:
    return metadata.model_dump_json()


class CaptionApiResponse(BaseModel):
    """
    Captioning API response: {Output, Job_id, Err}.

    Keys are matched case-insensitively; "id" is accepted for job_id.
    """

    model_config = ConfigDict(extra="ignore")

    output: str = ""
    job_id: Union[int, str, None] = None
    err: str = ""

    @model_validator(mode="before")
    @classmethod
    def _normalize_keys(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        out = {str(k).lower(): v for k, v in data.items()}
        if "job_id" not in out and "id" in out:
            out["job_id"] = out["id"]
        for key in ("output", "err"):
            if out.get(key) is None:
                out[key] = ""
        return out


class Disposition(str, Enum):
    """What the dispatcher did with one inbound payload."""

    QUEUED = "queued"
    DROPPED_DECODE = "dropped_decode"
    SKIPPED_CAPTIONED = "skipped_captioned"
    DUPLICATE_IN_FLIGHT = "duplicate_in_flight"
    REJECTED_BACKPRESSURE = "rejected_backpressure"


class EnrichStatus(str, Enum):
    ENRICHED = "enriched"  # persisted and published
    PARTIAL = "partial"  # caption produced, persist and/or publish failed
    FAILED = "failed"  # no caption produced
    SKIPPED = "skipped"  # caption already present in the store


@dataclass
class EnrichResult:
    """Outcome of one enrichment, with every step error collected."""

    photo_id: str
    status: EnrichStatus = EnrichStatus.FAILED
    caption: Optional[str] = None
    persisted: bool = False
    published: bool = False
    errors: List[Tuple[str, str]] = field(default_factory=list)
    latency_ms: float = 0.0
    started: float = field(default_factory=time.perf_counter, repr=False)

    def add_error(self, exc: Exception) -> None:
        kind = getattr(exc, "kind", type(exc).__name__)
        self.errors.append((kind, str(exc)))

    def finish(self) -> "EnrichResult":
        self.latency_ms = (time.perf_counter() - self.started) * 1000
        if self.caption is None:
            if self.status != EnrichStatus.SKIPPED:
                self.status = EnrichStatus.FAILED
        elif self.persisted and self.published:
            self.status = EnrichStatus.ENRICHED
        else:
            self.status = EnrichStatus.PARTIAL
        return self

    @property
    def failed(self) -> bool:
        return self.status == EnrichStatus.FAILED
