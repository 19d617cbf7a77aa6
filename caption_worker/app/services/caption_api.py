# caption_worker/app/services/caption_api.py
from __future__ import annotations

import logging
from typing import Any, Dict, Optional
from urllib.parse import urlparse

import requests
from pydantic import ValidationError

from caption_worker.app.errors import ApiError, FetchError
from caption_worker.app.models import CaptionApiResponse

log = logging.getLogger(__name__)

FORM_FIELD = "image"
FORM_FILENAME = "file.jpg"
CHUNK_SIZE = 64 * 1024


def _has_host(url: str) -> bool:
    try:
        return bool(urlparse(url).netloc)
    except ValueError:
        return False


def parse_caption_response(json_obj: Any) -> str:
    """
    Turn a decoded captioning API response into a caption.

    Args:
        json_obj: Parsed JSON body, e.g. {"Output": "...", "Job_id": 1, "Err": ""}

    Returns:
        The caption text

    Raises:
        ApiError: If Err is non-empty (message equals Err), the shape or field types are
            unexpected, or the caption is empty
    """
    if not isinstance(json_obj, dict):
        raise ApiError(f"Unexpected caption api response format: {type(json_obj).__name__}")
    try:
        response = CaptionApiResponse.model_validate(json_obj)
    except ValidationError as e:
        raise ApiError(
            f"Unexpected caption api response format: {e.error_count()} invalid field(s)"
        ) from e
    if response.err:
        raise ApiError(response.err)
    if not response.output:
        # an empty caption would republish a record that still looks unenriched
        raise ApiError("Caption api returned an empty caption")
    return response.output


class CaptionService:
    """
    Fetches a photo by url and asks the captioning endpoint to describe it.

    One instance is shared by all worker threads; requests.Session is used only
    for its connection pool.
    """

    def __init__(
        self,
        api_url: str,
        api_key: str,
        *,
        session: Optional[requests.Session] = None,
        fetch_timeout: Optional[float] = None,
        api_timeout: Optional[float] = None,
        max_image_bytes: int = 1024 * 1024 * 32,
    ):
        self.api_url = api_url
        self.api_key = api_key
        self.session = session or requests.Session()
        self.fetch_timeout = fetch_timeout
        self.api_timeout = api_timeout
        self.max_image_bytes = max_image_bytes

    def fetch_photo(self, url: str) -> bytes:
        if not url or not _has_host(url):
            raise FetchError(f"Incorrect photo url provided: {url!r}")

        try:
            with self.session.get(url, stream=True, timeout=self.fetch_timeout) as resp:
                resp.raise_for_status()
                buf = bytearray()
                for chunk in resp.iter_content(chunk_size=CHUNK_SIZE):
                    if not chunk:
                        continue
                    buf.extend(chunk)
                    if len(buf) > self.max_image_bytes:
                        raise FetchError(
                            f"Photo at {url} exceeds {self.max_image_bytes} bytes"
                        )
        except requests.RequestException as e:
            raise FetchError(f"Could not get the photo by {url}: {e}") from e

        log.debug(f"Fetched {len(buf)} bytes from {url}")
        return bytes(buf)

    def build_form(self, image: bytes) -> Dict[str, Any]:
        """Multipart payload for requests: one file field `image` named file.jpg."""
        return {FORM_FIELD: (FORM_FILENAME, image)}

    def request_caption(self, image: bytes) -> str:
        try:
            resp = self.session.post(
                self.api_url,
                files=self.build_form(image),
                headers={"Api-Key": self.api_key},
                timeout=self.api_timeout,
            )
        except requests.RequestException as e:
            raise ApiError(f"Couldn't make a request to caption api: {e}") from e

        try:
            body = resp.json()
        except ValueError as e:
            raise ApiError(
                f"Couldn't read response from api (status {resp.status_code}): {resp.text[:200]}",
                status_code=resp.status_code,
            ) from e

        try:
            return parse_caption_response(body)
        except ApiError as e:
            e.status_code = resp.status_code
            raise

    def enrich(self, photo_url: str) -> str:
        """
        Caption the photo at photo_url.

        Raises:
            FetchError: The photo could not be retrieved
            ApiError: The captioning API failed or reported an error
        """
        image = self.fetch_photo(photo_url)
        return self.request_caption(image)

    def close(self) -> None:
        self.session.close()
