"""Resolution of a logical message sort onto a secondary index."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Union


class SortDirection(IntEnum):
    DESCENDING = -1
    ASCENDING = 1


# Resolution order when more than one dimension is set.
SORT_PROPERTIES = ("dateCreated", "datePublished", "messageTimestamp")
DEFAULT_SORT_PROPERTY = "messageTimestamp"


@dataclass(frozen=True)
class MessageSort:
    """Requested sort; at most one dimension is honoured."""

    date_created: SortDirection | None = None
    date_published: SortDirection | None = None
    message_timestamp: SortDirection | None = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> MessageSort:
        """Build from the wire form, e.g. ``{"dateCreated": -1}``."""

        def _direction(name: str) -> SortDirection | None:
            value = data.get(name)
            return None if value is None else SortDirection(int(value))

        return cls(
            date_created=_direction("dateCreated"),
            date_published=_direction("datePublished"),
            message_timestamp=_direction("messageTimestamp"),
        )

    def as_mapping(self) -> dict[str, int]:
        directions = (self.date_created, self.date_published, self.message_timestamp)
        pairs = zip(SORT_PROPERTIES, directions)
        return {name: int(direction) for name, direction in pairs if direction is not None}


@dataclass(frozen=True)
class SortSpec:
    """Physical sort: the secondary index to scan and its direction."""

    property: str
    direction: SortDirection

    @property
    def index_name(self) -> str:
        return self.property

    @property
    def ascending(self) -> bool:
        return self.direction == SortDirection.ASCENDING


def resolve_sort(message_sort: Union[MessageSort, Mapping[str, Any], None]) -> SortSpec:
    """Pick the index and direction for ``message_sort``.

    Falls back to ``messageTimestamp`` ascending when no dimension is set.
    """
    if message_sort is None:
        return SortSpec(DEFAULT_SORT_PROPERTY, SortDirection.ASCENDING)
    if not isinstance(message_sort, MessageSort):
        message_sort = MessageSort.from_mapping(message_sort)

    for name, direction in message_sort.as_mapping().items():
        return SortSpec(name, SortDirection(direction))
    return SortSpec(DEFAULT_SORT_PROPERTY, SortDirection.ASCENDING)
