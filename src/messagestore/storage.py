"""Storage contracts, shared query planning and backend selection."""

from __future__ import annotations

import io
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, replace
from typing import Any, BinaryIO, Protocol, Union, runtime_checkable
from urllib.parse import urlparse

from messagestore.cancellation import CancellationSignal, raise_if_cancelled
from messagestore.config import StoreConfig
from messagestore.cursor import (
    ContinuationCursor,
    ExhaustedCursor,
    decode_cursor,
    encode_cursor,
    query_scope,
)
from messagestore.encoding import GenericMessage, decode_message
from messagestore.errors import StorageBackendError
from messagestore.filters import Filter, FilterExpression, build_filter_expression
from messagestore.indexes import KeyValues
from messagestore.pagination import IndexedRow, Page
from messagestore.sorting import MessageSort, SortSpec, resolve_sort

DEFAULT_DB_PATH = "messagestore.db"


@dataclass(frozen=True)
class Pagination:
    limit: int | None = None
    cursor: str | None = None


@dataclass
class QueryResult:
    messages: list[GenericMessage]
    cursor: str | None = None


@dataclass
class DataStorePutResult:
    data_size: int


@dataclass
class DataStoreGetResult:
    data_size: int
    data_stream: BinaryIO


DataSource = Union[bytes, bytearray, BinaryIO, Iterable[bytes]]


@runtime_checkable
class MessageStoreProtocol(Protocol):
    """Backend-agnostic message store contract."""

    def open(self) -> None: ...

    def close(self) -> None: ...

    def put(
        self,
        tenant: str,
        message: GenericMessage,
        indexes: KeyValues,
        *,
        signal: CancellationSignal | None = None,
    ) -> None: ...

    def get(
        self,
        tenant: str,
        cid: str,
        *,
        signal: CancellationSignal | None = None,
    ) -> GenericMessage | None: ...

    def query(
        self,
        tenant: str,
        filters: Sequence[Filter],
        message_sort: Union[MessageSort, dict[str, int], None] = None,
        pagination: Pagination | None = None,
        *,
        signal: CancellationSignal | None = None,
    ) -> QueryResult: ...

    def delete(
        self,
        tenant: str,
        cid: str,
        *,
        signal: CancellationSignal | None = None,
    ) -> None: ...

    def clear(
        self,
        tenant: str | None = None,
        *,
        signal: CancellationSignal | None = None,
    ) -> int: ...

    def storage_info(self) -> dict[str, Any]: ...


@runtime_checkable
class DataStoreProtocol(Protocol):
    """Backend-agnostic contract for payloads too large to keep inline."""

    def open(self) -> None: ...

    def close(self) -> None: ...

    def put(
        self,
        tenant: str,
        record_id: str,
        data_cid: str,
        data_stream: DataSource,
        *,
        signal: CancellationSignal | None = None,
    ) -> DataStorePutResult: ...

    def get(
        self,
        tenant: str,
        record_id: str,
        data_cid: str,
        *,
        signal: CancellationSignal | None = None,
    ) -> DataStoreGetResult | None: ...

    def delete(
        self,
        tenant: str,
        record_id: str,
        data_cid: str,
        *,
        signal: CancellationSignal | None = None,
    ) -> None: ...

    def clear(
        self, tenant: str | None = None, *, signal: CancellationSignal | None = None
    ) -> int: ...

    def storage_info(self) -> dict[str, Any]: ...


# --- Shared query helpers ---


@dataclass(frozen=True)
class QueryPlan:
    """Everything a backend needs to run one page of a query."""

    tenant: str
    sort: SortSpec
    scope: str
    filter_expr: FilterExpression | None
    limit: int | None
    cursor: Union[ContinuationCursor, ExhaustedCursor, None]


def plan_query(
    tenant: str,
    filters: Sequence[Filter] | None,
    message_sort: Union[MessageSort, dict[str, int], None],
    pagination: Pagination | None,
) -> QueryPlan:
    sort = resolve_sort(message_sort)
    scope = query_scope(tenant, sort, filters)
    limit = pagination.limit if pagination is not None else None
    if limit is not None and limit < 0:
        raise ValueError(f"Pagination limit must not be negative, got {limit}")
    cursor = None
    if pagination is not None and pagination.cursor:
        cursor = decode_cursor(pagination.cursor, scope=scope)
    return QueryPlan(
        tenant=tenant,
        sort=sort,
        scope=scope,
        filter_expr=build_filter_expression(filters),
        limit=limit or None,
        cursor=cursor,
    )


def page_to_result(page: Page, *, signal: CancellationSignal | None = None) -> QueryResult:
    """Decode the rows of ``page`` into messages."""
    messages: list[GenericMessage] = []
    for row in page.rows:
        raise_if_cancelled(signal, "query")
        messages.append(_decode_row(row))
    cursor = encode_cursor(page.cursor) if page.cursor is not None else None
    return QueryResult(messages=messages, cursor=cursor)


def _decode_row(row: IndexedRow) -> GenericMessage:
    return decode_message(row.encoded_bytes, row.encoded_data, expected_cid=row.message_cid)


def read_data(data_stream: DataSource) -> bytes:
    """Drain a data source into bytes."""
    if isinstance(data_stream, (bytes, bytearray)):
        return bytes(data_stream)
    if hasattr(data_stream, "read"):
        return data_stream.read()  # type: ignore[union-attr]
    return b"".join(data_stream)


def bytes_result(data: bytes) -> DataStoreGetResult:
    return DataStoreGetResult(data_size=len(data), data_stream=io.BytesIO(data))


# --- Backend selection ---


@dataclass(frozen=True)
class StorageTarget:
    """Resolved storage target from a storage URI."""

    backend: str
    uri: str
    db_path: str | None = None
    bucket: str | None = None
    prefix: str | None = None


def parse_storage_target(storage_uri: str | None = None) -> StorageTarget:
    """Resolve a backend target from ``sqlite://``, ``dynamodb://`` or ``s3://`` URIs."""
    if storage_uri is None:
        return StorageTarget(
            backend="sqlite", uri=f"sqlite:///{DEFAULT_DB_PATH}", db_path=DEFAULT_DB_PATH
        )

    parsed = urlparse(storage_uri)

    if parsed.scheme == "sqlite":
        sqlite_path = parsed.path
        if parsed.netloc:
            sqlite_path = f"{parsed.netloc}{sqlite_path}"
        elif sqlite_path.startswith("//"):
            # sqlite:////abs/path -> /abs/path
            sqlite_path = sqlite_path[1:]
        if sqlite_path == "/:memory:":
            sqlite_path = ":memory:"
        if not sqlite_path:
            raise StorageBackendError("parse_storage_uri", f"Invalid sqlite URI: {storage_uri}")
        return StorageTarget(backend="sqlite", uri=storage_uri, db_path=sqlite_path)

    if parsed.scheme == "dynamodb":
        prefix = f"{parsed.netloc}{parsed.path}".strip("/")
        return StorageTarget(backend="dynamodb", uri=storage_uri, prefix=prefix)

    if parsed.scheme == "s3":
        bucket = parsed.netloc
        prefix = parsed.path.lstrip("/").rstrip("/")
        if not bucket:
            raise StorageBackendError("parse_storage_uri", f"Invalid s3 URI: {storage_uri}")
        return StorageTarget(backend="s3", uri=storage_uri, bucket=bucket, prefix=prefix)

    raise StorageBackendError(
        "parse_storage_uri",
        f"Unsupported storage URI scheme '{parsed.scheme}' for '{storage_uri}'",
    )


def _dynamodb_config(target: StorageTarget, config: StoreConfig) -> StoreConfig:
    if target.prefix:
        return replace(config, table_prefix=target.prefix)
    return config


def open_message_store(
    storage_uri: str | None = None,
    *,
    config: StoreConfig | None = None,
) -> MessageStoreProtocol:
    """Build (but do not open) the message store bound to ``storage_uri``."""
    target = parse_storage_target(storage_uri)
    cfg = config or StoreConfig()
    if target.backend == "sqlite":
        from messagestore.storage_sqlite import SqliteMessageStore

        assert target.db_path is not None
        return SqliteMessageStore(target.db_path)
    if target.backend == "dynamodb":
        from messagestore.storage_dynamodb import DynamoMessageStore

        return DynamoMessageStore(config=_dynamodb_config(target, cfg))
    raise StorageBackendError(
        "open_message_store", f"Backend '{target.backend}' cannot hold messages"
    )


def open_data_store(
    storage_uri: str | None = None,
    *,
    config: StoreConfig | None = None,
) -> DataStoreProtocol:
    """Build (but do not open) the data store bound to ``storage_uri``."""
    target = parse_storage_target(storage_uri)
    cfg = config or StoreConfig()
    if target.backend == "sqlite":
        from messagestore.storage_sqlite import SqliteDataStore

        assert target.db_path is not None
        return SqliteDataStore(target.db_path)
    if target.backend == "dynamodb":
        from messagestore.storage_dynamodb import DynamoDataStore

        return DynamoDataStore(config=_dynamodb_config(target, cfg))
    if target.backend == "s3":
        from messagestore.storage_s3 import S3DataStore

        assert target.bucket is not None
        return S3DataStore(bucket=target.bucket, prefix=target.prefix or "", config=cfg)
    raise StorageBackendError("open_data_store", f"Unsupported backend '{target.backend}'")


__all__ = [
    "DataStoreGetResult",
    "DataStoreProtocol",
    "DataStorePutResult",
    "MessageStoreProtocol",
    "Pagination",
    "QueryPlan",
    "QueryResult",
    "StorageTarget",
    "open_data_store",
    "open_message_store",
    "page_to_result",
    "parse_storage_target",
    "plan_query",
    "read_data",
]
