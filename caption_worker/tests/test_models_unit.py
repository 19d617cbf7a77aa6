import json

import pytest

from caption_worker.app.errors import DecodeError
from caption_worker.app.models import (
    CaptionApiResponse,
    EnrichResult,
    EnrichStatus,
    PhotoMetadata,
    decode_metadata,
    encode_metadata,
)


class TestPhotoMetadata:
    def test_missing_fields_decode_to_zero_values(self):
        meta = decode_metadata(
            '{"photo_id":"p1","photo_url":"https://img.example/1.jpg","caption":""}'
        )
        assert meta.photo_id == "p1"
        assert meta.photo_url == "https://img.example/1.jpg"
        assert meta.chat_id == 0
        assert meta.caption == ""
        assert meta.styled_url == ""
        assert meta.published is False
        assert meta.needs_caption

    def test_null_strings_decode_as_empty(self):
        meta = decode_metadata('{"photo_id":"p1","caption":null,"styled_url":null}')
        assert meta.caption == ""
        assert meta.styled_url == ""

    def test_unknown_fields_ignored(self):
        meta = decode_metadata(b'{"photo_id":"p9","extra":{"a":1}}')
        assert meta.photo_id == "p9"

    @pytest.mark.parametrize(
        "record",
        [
            PhotoMetadata(),
            PhotoMetadata(chat_id=0, photo_url="", caption="", photo_id=""),
            PhotoMetadata(
                chat_id=-1001234567890,
                photo_url="https://img.example/1.jpg",
                caption="a dog running",
                styled_url="https://img.example/1-styled.jpg",
                published=True,
                photo_id="AgADBAAD",
            ),
            PhotoMetadata(caption="ünïcødé ✓", photo_id="p\"quoted\""),
        ],
    )
    def test_round_trip_is_lossless(self, record):
        assert decode_metadata(encode_metadata(record)) == record

    def test_encoded_record_carries_all_wire_keys(self):
        payload = json.loads(encode_metadata(PhotoMetadata(photo_id="p1")))
        assert set(payload) == {
            "chat_id",
            "photo_url",
            "caption",
            "styled_url",
            "published",
            "photo_id",
        }

    @pytest.mark.parametrize(
        "payload",
        [
            "{not json",
            "",
            "[1, 2]",
            '"just a string"',
            '{"chat_id": "abc"}',
            '{"chat_id": "5"}',
            '{"published": "yes"}',
            '{"published": 1}',
            '{"photo_id": 42}',
        ],
    )
    def test_malformed_payload_raises_decode_error(self, payload):
        with pytest.raises(DecodeError, match="Couldn't decode JSON metadata"):
            decode_metadata(payload)

    def test_captioned_record_does_not_need_caption(self):
        assert not PhotoMetadata(caption="x").needs_caption


class TestCaptionApiResponse:
    def test_capitalized_keys(self):
        r = CaptionApiResponse.model_validate({"Output": "a", "Job_id": 1, "Err": ""})
        assert r.output == "a"
        assert r.job_id == 1
        assert r.err == ""

    def test_lowercase_keys_and_id_alias(self):
        r = CaptionApiResponse.model_validate({"output": "b", "id": "abc-123"})
        assert r.output == "b"
        assert r.job_id == "abc-123"

    def test_null_err_is_empty(self):
        r = CaptionApiResponse.model_validate({"Output": "c", "Err": None})
        assert r.err == ""


class TestEnrichResult:
    def test_status_derivation(self):
        r = EnrichResult(photo_id="p1")
        assert r.finish().status == EnrichStatus.FAILED
        assert r.failed

        r = EnrichResult(photo_id="p1", caption="x", persisted=True, published=True)
        assert r.finish().status == EnrichStatus.ENRICHED

        r = EnrichResult(photo_id="p1", caption="x", persisted=False, published=True)
        assert r.finish().status == EnrichStatus.PARTIAL
