"""CLI helpers for backend-aware store construction."""

from __future__ import annotations

import os

from messagestore.config import StoreConfig
from messagestore.storage import (
    DataStoreProtocol,
    MessageStoreProtocol,
    open_data_store,
    open_message_store,
)


def _config_from_env() -> StoreConfig:
    """Build store config from CLI environment defaults."""
    window = os.getenv("MESSAGESTORE_QUERY_WINDOW_SIZE")
    return StoreConfig(
        dynamodb_region=os.getenv("MESSAGESTORE_DYNAMODB_REGION"),
        dynamodb_endpoint_url=os.getenv("MESSAGESTORE_DYNAMODB_ENDPOINT_URL"),
        s3_region=os.getenv("MESSAGESTORE_S3_REGION"),
        s3_endpoint_url=os.getenv("MESSAGESTORE_S3_ENDPOINT_URL"),
        query_window_size=int(window) if window else StoreConfig.query_window_size,
    )


def open_messages() -> MessageStoreProtocol:
    """Open the message store selected by the global CLI options."""
    from messagestore.cli import state

    store = open_message_store(state.storage_uri, config=_config_from_env())
    store.open()
    return store


def open_data() -> DataStoreProtocol:
    """Open the data store selected by the global CLI options."""
    from messagestore.cli import state

    store = open_data_store(state.data_uri or state.storage_uri, config=_config_from_env())
    store.open()
    return store
