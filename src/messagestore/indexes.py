"""Projection of caller-supplied index maps onto stored attributes."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Union

TAG_PREFIX = "tag."

# Item attributes owned by the store itself.
RESERVED_ATTRIBUTES = frozenset({"tenant", "messageCid", "encodedMessageBytes", "encodedData"})

IndexValue = Union[str, int, float, bool]
KeyValues = Mapping[str, Union[IndexValue, list[IndexValue], None]]
TagValue = Union[str, list[str]]


def normalize_value(value: Any) -> str:
    """Render an index or filter value in its stored string form."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, str):
        return value
    raise ValueError(f"Unsupported index value of type {type(value).__name__}: {value!r}")


def project_indexes(indexes: KeyValues) -> tuple[dict[str, str], dict[str, TagValue]]:
    """Split ``indexes`` into scalar attributes and ``tag.``-prefixed tag attributes.

    Scalar attributes are eligible for secondary-index placement. Tags may be
    multi-valued and are only used when filtering. ``None`` values are dropped.
    """
    scalars: dict[str, str] = {}
    tags: dict[str, TagValue] = {}
    for name, value in indexes.items():
        if name in RESERVED_ATTRIBUTES:
            raise ValueError(f"Index name '{name}' is reserved")
        if value is None:
            continue
        if name.startswith(TAG_PREFIX):
            if isinstance(value, (list, tuple)):
                tags[name] = [normalize_value(v) for v in value]
            else:
                tags[name] = normalize_value(value)
            continue
        if isinstance(value, (list, tuple)):
            raise ValueError(
                f"Index '{name}' must be scalar; prefix it with '{TAG_PREFIX}' "
                "to store multiple values"
            )
        scalars[name] = normalize_value(value)
    return scalars, tags
