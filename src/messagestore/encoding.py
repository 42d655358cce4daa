"""Canonical message encoding and content addressing.

A message is encoded to canonical JSON (sorted keys, compact separators, UTF-8)
after its ``encodedData`` payload has been stripped. The content identifier is
the SHA-256 hex digest of those bytes, so the identifier of a message envelope
does not depend on whether its payload is stored inline or in a data store.
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from messagestore.errors import RecordDecodeError, RecordEncodeError

ENCODED_DATA_FIELD = "encodedData"

GenericMessage = dict[str, Any]


@dataclass(frozen=True)
class EncodedMessage:
    """Result of encoding one logical message."""

    message_cid: str
    encoded_bytes: bytes
    encoded_data: str | None = None


def canonical_bytes(value: Any) -> bytes:
    """Serialize a JSON-compatible value to its canonical byte form."""
    try:
        text = json.dumps(
            value,
            sort_keys=True,
            separators=(",", ":"),
            ensure_ascii=False,
            allow_nan=False,
        )
    except (TypeError, ValueError) as e:
        raise RecordEncodeError(f"Message is not canonically encodable: {e}") from e
    return text.encode("utf-8")


def compute_cid(encoded_bytes: bytes) -> str:
    return hashlib.sha256(encoded_bytes).hexdigest()


def encode_message(message: Mapping[str, Any]) -> EncodedMessage:
    """Strip the payload from ``message`` and derive its content identifier.

    The caller's mapping is left untouched.
    """
    if not isinstance(message, Mapping):
        raise RecordEncodeError(f"Message must be a mapping, got {type(message).__name__}")

    stripped = dict(message)
    encoded_data = stripped.pop(ENCODED_DATA_FIELD, None)
    if encoded_data is not None and not isinstance(encoded_data, str):
        raise RecordEncodeError(
            f"'{ENCODED_DATA_FIELD}' must be a string, got {type(encoded_data).__name__}"
        )

    encoded_bytes = canonical_bytes(stripped)
    return EncodedMessage(
        message_cid=compute_cid(encoded_bytes),
        encoded_bytes=encoded_bytes,
        encoded_data=encoded_data,
    )


def decode_message(
    encoded_bytes: bytes,
    encoded_data: str | None = None,
    *,
    expected_cid: str | None = None,
) -> GenericMessage:
    """Rebuild a logical message from stored bytes and its optional inline payload.

    When ``expected_cid`` is given the bytes must hash to it.
    """
    if expected_cid is not None and compute_cid(encoded_bytes) != expected_cid:
        raise RecordDecodeError("content hash does not match", message_cid=expected_cid)

    try:
        message = json.loads(bytes(encoded_bytes).decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as e:
        raise RecordDecodeError(str(e), message_cid=expected_cid) from e

    if not isinstance(message, dict):
        raise RecordDecodeError(
            f"expected an object, got {type(message).__name__}", message_cid=expected_cid
        )

    if encoded_data is not None:
        message[ENCODED_DATA_FIELD] = encoded_data
    return message


def message_cid(message: Mapping[str, Any]) -> str:
    """Content identifier of ``message`` as the store would key it."""
    return encode_message(message).message_cid
