# caption_worker/app/errors.py
"""Typed failures for each pipeline step.

Everything below ConfigError is recoverable: the message is dropped (or
dead-lettered) and the worker keeps going.
"""

from __future__ import annotations

from typing import Optional


class CaptionWorkerError(Exception):
    kind = "error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message


class ConfigError(CaptionWorkerError):
    """Missing or invalid process configuration. Fatal at startup."""

    kind = "config"


class DecodeError(CaptionWorkerError):
    """Inbound payload is not a valid photo-metadata record."""

    kind = "decode"


class FetchError(CaptionWorkerError):
    """Image could not be retrieved (bad url, transport failure, bad status)."""

    kind = "fetch"


class ApiError(CaptionWorkerError):
    """Captioning API failed, either in transport or via a non-empty Err field."""

    kind = "api"

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class PersistError(CaptionWorkerError):
    kind = "persist"


class PublishError(CaptionWorkerError):
    kind = "publish"


__all__ = [
    "CaptionWorkerError",
    "ConfigError",
    "DecodeError",
    "FetchError",
    "ApiError",
    "PersistError",
    "PublishError",
]
