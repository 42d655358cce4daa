"""Configuration for message and data stores."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class StoreConfig:
    """Configuration shared by the store backends."""

    dynamodb_region: str | None = None
    dynamodb_endpoint_url: str | None = None
    request_timeout_s: float = 10.0
    max_attempts: int = 5
    table_prefix: str = ""
    message_table_name: str = "messageStoreMessages"
    data_table_name: str = "dataStore"
    create_tables: bool = True
    query_window_size: int = 100
    clear_window_size: int = 100
    s3_region: str | None = None
    s3_endpoint_url: str | None = None

    def table_name(self, base: str) -> str:
        return f"{self.table_prefix}{base}"
