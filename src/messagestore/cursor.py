"""Opaque, versioned pagination cursors.

A cursor records the sort value and ``messageCid`` of the last message returned,
plus a fingerprint of the query it belongs to. Tokens are unpadded base64url
JSON so that callers never see backend pagination keys.
"""

from __future__ import annotations

import base64
import hashlib
import logging
from collections.abc import Sequence
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from messagestore.encoding import canonical_bytes
from messagestore.errors import InvalidCursorError
from messagestore.filters import Filter, normalize_filters
from messagestore.sorting import SortSpec

logger = logging.getLogger(__name__)

CURSOR_VERSION = 1


class _CursorBase(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    v: Literal[1] = CURSOR_VERSION
    scope: str


class ContinuationCursor(_CursorBase):
    """Resume strictly after (value, message_cid) in the scope's sort order."""

    kind: Literal["continuation"] = "continuation"
    sort: str
    message_cid: str
    value: str


class ExhaustedCursor(_CursorBase):
    """Marks a finished query; resuming from it yields an empty page.

    Never issued here, since the last page carries no cursor at all. Accepted on
    decode so tokens from other issuers of this format stay readable.
    """

    kind: Literal["exhausted"] = "exhausted"


PaginationCursor = Annotated[
    Union[ContinuationCursor, ExhaustedCursor], Field(discriminator="kind")
]

_cursor_adapter: TypeAdapter[Union[ContinuationCursor, ExhaustedCursor]] = TypeAdapter(
    PaginationCursor
)


def query_scope(tenant: str, sort: SortSpec, filters: Sequence[Filter] | None) -> str:
    """Fingerprint of the (tenant, sort, filters) combination a cursor is valid for."""
    clauses = sorted(normalize_filters(filters), key=lambda c: canonical_bytes(c))
    payload = {
        "tenant": tenant,
        "sort": sort.property,
        "direction": int(sort.direction),
        "filters": clauses,
    }
    return hashlib.sha256(canonical_bytes(payload)).hexdigest()


def encode_cursor(cursor: Union[ContinuationCursor, ExhaustedCursor]) -> str:
    raw = cursor.model_dump_json().encode("utf-8")
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def decode_cursor(token: str, *, scope: str) -> Union[ContinuationCursor, ExhaustedCursor]:
    """Parse ``token`` and check that it was issued for ``scope``."""
    try:
        padded = token + "=" * (-len(token) % 4)
        raw = base64.urlsafe_b64decode(padded.encode("ascii"))
        cursor = _cursor_adapter.validate_json(raw)
    except ValueError as e:
        raise InvalidCursorError(f"Malformed pagination cursor: {e}") from e

    if cursor.scope != scope:
        logger.warning("Rejected pagination cursor issued for a different query")
        raise InvalidCursorError(
            "Pagination cursor was issued for a different tenant, sort or filter set"
        )
    return cursor
