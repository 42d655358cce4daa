"""Messagestore: tenant-scoped, content-addressed message storage."""

__version__ = "0.1.0"

from messagestore.config import StoreConfig
from messagestore.encoding import EncodedMessage, decode_message, encode_message, message_cid
from messagestore.errors import (
    InvalidCursorError,
    MessageStoreError,
    OperationCancelledError,
    RecordDecodeError,
    RecordEncodeError,
    StorageBackendError,
    StoreNotOpenError,
)
from messagestore.indexes import project_indexes
from messagestore.sorting import MessageSort, SortDirection
from messagestore.storage import (
    DataStoreGetResult,
    DataStoreProtocol,
    DataStorePutResult,
    MessageStoreProtocol,
    Pagination,
    QueryResult,
    open_data_store,
    open_message_store,
)

__all__ = [
    "__version__",
    "StoreConfig",
    "EncodedMessage",
    "encode_message",
    "decode_message",
    "message_cid",
    "project_indexes",
    "MessageSort",
    "SortDirection",
    "Pagination",
    "QueryResult",
    "DataStoreGetResult",
    "DataStorePutResult",
    "MessageStoreProtocol",
    "DataStoreProtocol",
    "open_message_store",
    "open_data_store",
    "MessageStoreError",
    "StoreNotOpenError",
    "RecordEncodeError",
    "RecordDecodeError",
    "OperationCancelledError",
    "InvalidCursorError",
    "StorageBackendError",
]
