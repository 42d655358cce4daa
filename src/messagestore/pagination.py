"""Cursor pagination over windowed secondary-index scans.

Backends expose a secondary index as a sequence of windows, each window being
one bounded physical query. Filters are evaluated after the fetch, so a single
window may hold fewer matches than requested; :func:`collect_page` keeps
issuing windows until it holds ``limit + 1`` matches whose order is settled, or
the index is exhausted.

Ordering is (sort value, messageCid), both in the requested direction. A
physical index is only ordered by sort value, so rows that tie on the boundary
sort value may be split across windows in any order. A page is therefore only
cut once a row with a sort value strictly past the boundary has been scanned.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any, Union

from messagestore.cancellation import CancellationSignal, raise_if_cancelled
from messagestore.cursor import ContinuationCursor, ExhaustedCursor
from messagestore.filters import FilterExpression, matches_filter
from messagestore.sorting import SortSpec

logger = logging.getLogger(__name__)


@dataclass
class IndexedRow:
    """One stored message as seen through a secondary index."""

    message_cid: str
    sort_value: str
    encoded_bytes: bytes
    encoded_data: str | None = None
    attributes: Mapping[str, Any] = field(default_factory=dict)

    @property
    def order_key(self) -> tuple[str, str]:
        return (self.sort_value, self.message_cid)


@dataclass
class Window:
    """Rows of one physical query and the backend key to continue from."""

    rows: list[IndexedRow]
    next_key: Any | None = None


WindowFetcher = Callable[[Any], Window]


@dataclass
class Page:
    rows: list[IndexedRow]
    cursor: ContinuationCursor | None = None


def is_past_cursor(
    row: IndexedRow,
    cursor: Union[ContinuationCursor, ExhaustedCursor, None],
    sort: SortSpec,
) -> bool:
    """Whether ``row`` comes strictly after ``cursor`` in ``sort`` order."""
    if cursor is None:
        return True
    if isinstance(cursor, ExhaustedCursor):
        return False
    boundary = (cursor.value, cursor.message_cid)
    if sort.ascending:
        return row.order_key > boundary
    return row.order_key < boundary


def _strictly_beyond(value: str, boundary: str, sort: SortSpec) -> bool:
    return value > boundary if sort.ascending else value < boundary


def finalize_page(
    matches: list[IndexedRow],
    *,
    limit: int | None,
    sort: SortSpec,
    scope: str,
) -> Page:
    """Cut ordered ``matches`` to ``limit`` and emit a cursor when more remain."""
    if not limit or len(matches) <= limit:
        return Page(rows=matches)

    rows = matches[:limit]
    last = rows[-1]
    cursor = ContinuationCursor(
        scope=scope,
        sort=sort.property,
        message_cid=last.message_cid,
        value=last.sort_value,
    )
    return Page(rows=rows, cursor=cursor)


def collect_page(
    fetch_window: WindowFetcher,
    *,
    sort: SortSpec,
    scope: str,
    filter_expr: FilterExpression | None,
    limit: int | None,
    cursor: Union[ContinuationCursor, ExhaustedCursor, None] = None,
    signal: CancellationSignal | None = None,
) -> Page:
    """Accumulate matching rows across windows and build one page.

    ``limit`` of None or 0 reads the index to exhaustion. Any error raised by
    ``fetch_window`` fails the whole page.
    """
    if isinstance(cursor, ExhaustedCursor):
        return Page(rows=[])

    page_size = limit or 0
    matches: list[IndexedRow] = []
    start_key: Any = None
    last_scanned: str | None = None
    windows = 0

    while True:
        raise_if_cancelled(signal, "query")
        window = fetch_window(start_key)
        windows += 1

        for row in window.rows:
            if not is_past_cursor(row, cursor, sort):
                continue
            if matches_filter(filter_expr, row.attributes):
                matches.append(row)
        if window.rows:
            last_scanned = window.rows[-1].sort_value

        start_key = window.next_key
        if start_key is None:
            break
        if page_size and len(matches) > page_size and last_scanned is not None:
            matches.sort(key=lambda r: r.order_key, reverse=not sort.ascending)
            boundary = matches[page_size - 1].sort_value
            if _strictly_beyond(last_scanned, boundary, sort):
                break

    matches.sort(key=lambda r: r.order_key, reverse=not sort.ascending)
    logger.debug(
        "Collected %d matching rows from %d window(s) on index %s",
        len(matches),
        windows,
        sort.index_name,
    )
    return finalize_page(matches, limit=limit, sort=sort, scope=scope)
