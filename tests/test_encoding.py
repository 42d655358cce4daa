"""Tests for canonical encoding and content identifiers."""

import hashlib

import pytest

from messagestore.encoding import (
    ENCODED_DATA_FIELD,
    canonical_bytes,
    decode_message,
    encode_message,
    message_cid,
)
from messagestore.errors import RecordDecodeError, RecordEncodeError


class TestCanonicalBytes:
    def test_key_order_does_not_matter(self):
        a = canonical_bytes({"b": 1, "a": {"d": 2, "c": 3}})
        b = canonical_bytes({"a": {"c": 3, "d": 2}, "b": 1})
        assert a == b
        assert a == b'{"a":{"c":3,"d":2},"b":1}'

    def test_non_ascii_is_kept_as_utf8(self):
        assert canonical_bytes({"name": "café"}) == '{"name":"café"}'.encode("utf-8")

    def test_rejects_nan(self):
        with pytest.raises(RecordEncodeError):
            canonical_bytes({"x": float("nan")})

    def test_rejects_unserializable(self):
        with pytest.raises(RecordEncodeError):
            canonical_bytes({"x": object()})


class TestEncodeMessage:
    def test_cid_is_sha256_of_canonical_bytes(self):
        message = {"descriptor": {"method": "Write"}, "recordId": "r1"}
        encoded = encode_message(message)
        assert encoded.encoded_bytes == canonical_bytes(message)
        assert encoded.message_cid == hashlib.sha256(encoded.encoded_bytes).hexdigest()
        assert encoded.encoded_data is None

    def test_encoded_data_is_stripped_before_hashing(self):
        bare = {"descriptor": {"method": "Write"}}
        with_data = {**bare, ENCODED_DATA_FIELD: "aGVsbG8"}
        encoded = encode_message(with_data)
        assert encoded.message_cid == message_cid(bare)
        assert encoded.encoded_data == "aGVsbG8"
        assert b"aGVsbG8" not in encoded.encoded_bytes

    def test_caller_message_is_not_mutated(self):
        message = {"descriptor": {}, ENCODED_DATA_FIELD: "payload"}
        encode_message(message)
        assert message[ENCODED_DATA_FIELD] == "payload"

    def test_distinct_content_gives_distinct_cids(self):
        assert message_cid({"n": 1}) != message_cid({"n": 2})

    def test_non_string_encoded_data_rejected(self):
        with pytest.raises(RecordEncodeError, match="encodedData"):
            encode_message({"descriptor": {}, ENCODED_DATA_FIELD: 42})

    def test_non_mapping_rejected(self):
        with pytest.raises(RecordEncodeError):
            encode_message(["not", "a", "message"])  # type: ignore[arg-type]


class TestDecodeMessage:
    def test_restores_encoded_data(self):
        message = {"descriptor": {"method": "Write"}, ENCODED_DATA_FIELD: "abc"}
        encoded = encode_message(message)
        decoded = decode_message(
            encoded.encoded_bytes, encoded.encoded_data, expected_cid=encoded.message_cid
        )
        assert decoded == message

    def test_hash_mismatch_raises(self):
        encoded = encode_message({"descriptor": {}})
        with pytest.raises(RecordDecodeError, match="content hash"):
            decode_message(b'{"descriptor":{"x":1}}', expected_cid=encoded.message_cid)

    def test_invalid_json_raises(self):
        with pytest.raises(RecordDecodeError):
            decode_message(b"{not json")

    def test_non_object_raises(self):
        with pytest.raises(RecordDecodeError, match="expected an object"):
            decode_message(b"[1,2]")

    def test_error_carries_cid(self):
        with pytest.raises(RecordDecodeError) as exc_info:
            decode_message(b"garbage", expected_cid="abc123")
        assert exc_info.value.message_cid == "abc123"
