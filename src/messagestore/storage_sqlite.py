"""SQLite message and data stores.

Indexed scalar attributes and tag values are normalized into a separate
``message_attributes`` table, so a put spans two tables and runs in one
transaction. Filters and cursors are pushed down into SQL.
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Sequence
from typing import Any, Union

from messagestore.cancellation import CancellationSignal, raise_if_cancelled
from messagestore.cursor import ContinuationCursor, ExhaustedCursor
from messagestore.encoding import GenericMessage, decode_message, encode_message
from messagestore.errors import StorageBackendError, StoreNotOpenError
from messagestore.filters import (
    ComparisonExpression,
    Filter,
    FilterExpression,
    LogicalExpression,
)
from messagestore.indexes import KeyValues, project_indexes
from messagestore.pagination import IndexedRow, finalize_page
from messagestore.sorting import MessageSort
from messagestore.storage import (
    DataSource,
    DataStoreGetResult,
    DataStorePutResult,
    Pagination,
    QueryResult,
    bytes_result,
    page_to_result,
    plan_query,
    read_data,
)

logger = logging.getLogger(__name__)

_SORT_COLUMNS = {
    "dateCreated": "date_created",
    "datePublished": "date_published",
    "messageTimestamp": "message_timestamp",
}


def _compile_filter(expr: FilterExpression, params: list[Any]) -> str:
    """Compile a FilterExpression tree into a SQL WHERE clause fragment."""
    if isinstance(expr, ComparisonExpression):
        params.extend([expr.attribute, expr.value])
        return (
            "EXISTS (SELECT 1 FROM message_attributes AS a "
            "WHERE a.message_id = m.id AND a.name = ? AND a.value = ?)"
        )
    if isinstance(expr, LogicalExpression):
        if expr.op not in ("AND", "OR"):
            raise ValueError(f"Unknown logical operator: {expr.op}")
        if not expr.children:
            return "1" if expr.op == "AND" else "0"
        parts = [_compile_filter(c, params) for c in expr.children]
        joiner = f" {expr.op} "
        return f"({joiner.join(parts)})"
    raise ValueError(f"Unknown filter expression type: {type(expr)}")


def _connect(db_path: str) -> sqlite3.Connection:
    conn = sqlite3.connect(db_path)
    conn.execute("PRAGMA foreign_keys=ON")
    if db_path != ":memory:":
        conn.execute("PRAGMA journal_mode=WAL")
    return conn


class SqliteMessageStore:
    """SQLite-backed message store."""

    def __init__(self, db_path: str) -> None:
        self.db_path = db_path
        self._conn: sqlite3.Connection | None = None

    def __enter__(self) -> SqliteMessageStore:
        self.open()
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def open(self) -> None:
        if self._conn is not None:
            return
        try:
            conn = _connect(self.db_path)
            self._create_tables(conn)
        except sqlite3.Error as e:
            raise StorageBackendError("open", str(e)) from e
        self._conn = conn

    def _create_tables(self, conn: sqlite3.Connection) -> None:
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS messages (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                tenant TEXT NOT NULL,
                message_cid TEXT NOT NULL,
                encoded_message_bytes BLOB NOT NULL,
                encoded_data TEXT,
                date_created TEXT,
                date_published TEXT,
                message_timestamp TEXT,
                UNIQUE(tenant, message_cid)
            );

            CREATE INDEX IF NOT EXISTS idx_messages_date_created
                ON messages(tenant, date_created, message_cid);
            CREATE INDEX IF NOT EXISTS idx_messages_date_published
                ON messages(tenant, date_published, message_cid);
            CREATE INDEX IF NOT EXISTS idx_messages_message_timestamp
                ON messages(tenant, message_timestamp, message_cid);

            CREATE TABLE IF NOT EXISTS message_attributes (
                message_id INTEGER NOT NULL,
                name TEXT NOT NULL,
                value TEXT NOT NULL,
                FOREIGN KEY (message_id) REFERENCES messages(id) ON DELETE CASCADE
            );

            CREATE INDEX IF NOT EXISTS idx_message_attributes_lookup
                ON message_attributes(message_id, name, value);
        """)
        conn.commit()

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def _require_conn(self, operation: str) -> sqlite3.Connection:
        if self._conn is None:
            raise StoreNotOpenError(operation)
        return self._conn

    def storage_info(self) -> dict[str, Any]:
        return {"backend": "sqlite", "db_path": self.db_path, "open": self._conn is not None}

    def put(
        self,
        tenant: str,
        message: GenericMessage,
        indexes: KeyValues,
        *,
        signal: CancellationSignal | None = None,
    ) -> None:
        conn = self._require_conn("put")
        raise_if_cancelled(signal, "put")

        encoded = encode_message(message)
        scalars, tags = project_indexes(indexes)
        attribute_rows: list[tuple[str, str]] = list(scalars.items())
        for name, value in tags.items():
            if isinstance(value, list):
                attribute_rows.extend((name, v) for v in value)
            else:
                attribute_rows.append((name, value))

        try:
            with conn:
                conn.execute(
                    "DELETE FROM messages WHERE tenant = ? AND message_cid = ?",
                    (tenant, encoded.message_cid),
                )
                cur = conn.execute(
                    "INSERT INTO messages (tenant, message_cid, encoded_message_bytes, "
                    "encoded_data, date_created, date_published, message_timestamp) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?)",
                    (
                        tenant,
                        encoded.message_cid,
                        encoded.encoded_bytes,
                        encoded.encoded_data,
                        scalars.get("dateCreated"),
                        scalars.get("datePublished"),
                        scalars.get("messageTimestamp"),
                    ),
                )
                conn.executemany(
                    "INSERT INTO message_attributes (message_id, name, value) VALUES (?, ?, ?)",
                    [(cur.lastrowid, name, value) for name, value in attribute_rows],
                )
        except sqlite3.Error as e:
            raise StorageBackendError("put", str(e), tenant=tenant, key=encoded.message_cid) from e

    def get(
        self,
        tenant: str,
        cid: str,
        *,
        signal: CancellationSignal | None = None,
    ) -> GenericMessage | None:
        conn = self._require_conn("get")
        raise_if_cancelled(signal, "get")
        try:
            row = conn.execute(
                "SELECT encoded_message_bytes, encoded_data FROM messages "
                "WHERE tenant = ? AND message_cid = ?",
                (tenant, cid),
            ).fetchone()
        except sqlite3.Error as e:
            raise StorageBackendError("get", str(e), tenant=tenant, key=cid) from e
        if row is None:
            return None
        return decode_message(row[0], row[1], expected_cid=cid)

    def query(
        self,
        tenant: str,
        filters: Sequence[Filter],
        message_sort: Union[MessageSort, dict[str, int], None] = None,
        pagination: Pagination | None = None,
        *,
        signal: CancellationSignal | None = None,
    ) -> QueryResult:
        conn = self._require_conn("query")
        raise_if_cancelled(signal, "query")
        plan = plan_query(tenant, filters, message_sort, pagination)
        if isinstance(plan.cursor, ExhaustedCursor):
            return QueryResult(messages=[])

        column = _SORT_COLUMNS[plan.sort.property]
        params: list[Any] = [tenant]
        clauses = ["m.tenant = ?", f"m.{column} IS NOT NULL"]
        if plan.filter_expr is not None:
            clauses.append(_compile_filter(plan.filter_expr, params))
        if isinstance(plan.cursor, ContinuationCursor):
            op = ">" if plan.sort.ascending else "<"
            clauses.append(f"(m.{column}, m.message_cid) {op} (?, ?)")
            params.extend([plan.cursor.value, plan.cursor.message_cid])

        order = "ASC" if plan.sort.ascending else "DESC"
        sql = (
            f"SELECT m.message_cid, m.{column}, m.encoded_message_bytes, m.encoded_data "
            f"FROM messages AS m WHERE {' AND '.join(clauses)} "
            f"ORDER BY m.{column} {order}, m.message_cid {order}"
        )
        if plan.limit:
            # One extra row tells us whether another page exists.
            sql += " LIMIT ?"
            params.append(plan.limit + 1)

        try:
            fetched = conn.execute(sql, params).fetchall()
        except sqlite3.Error as e:
            raise StorageBackendError("query", str(e), tenant=tenant) from e

        rows = [
            IndexedRow(message_cid=r[0], sort_value=r[1], encoded_bytes=r[2], encoded_data=r[3])
            for r in fetched
        ]
        page = finalize_page(rows, limit=plan.limit, sort=plan.sort, scope=plan.scope)
        return page_to_result(page, signal=signal)

    def delete(
        self,
        tenant: str,
        cid: str,
        *,
        signal: CancellationSignal | None = None,
    ) -> None:
        conn = self._require_conn("delete")
        raise_if_cancelled(signal, "delete")
        try:
            with conn:
                conn.execute(
                    "DELETE FROM messages WHERE tenant = ? AND message_cid = ?", (tenant, cid)
                )
        except sqlite3.Error as e:
            raise StorageBackendError("delete", str(e), tenant=tenant, key=cid) from e

    def clear(
        self,
        tenant: str | None = None,
        *,
        signal: CancellationSignal | None = None,
    ) -> int:
        conn = self._require_conn("clear")
        raise_if_cancelled(signal, "clear")
        try:
            with conn:
                if tenant is None:
                    cur = conn.execute("DELETE FROM messages")
                else:
                    cur = conn.execute("DELETE FROM messages WHERE tenant = ?", (tenant,))
        except sqlite3.Error as e:
            raise StorageBackendError("clear", str(e), tenant=tenant) from e
        logger.info("Cleared %d message(s) from %s", cur.rowcount, self.db_path)
        return cur.rowcount


class SqliteDataStore:
    """SQLite-backed data store keyed by (tenant, recordId, dataCid)."""

    def __init__(self, db_path: str) -> None:
        self.db_path = db_path
        self._conn: sqlite3.Connection | None = None

    def __enter__(self) -> SqliteDataStore:
        self.open()
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def open(self) -> None:
        if self._conn is not None:
            return
        try:
            conn = _connect(self.db_path)
            conn.executescript("""
                CREATE TABLE IF NOT EXISTS data_store (
                    tenant TEXT NOT NULL,
                    record_id TEXT NOT NULL,
                    data_cid TEXT NOT NULL,
                    data BLOB NOT NULL,
                    PRIMARY KEY (tenant, record_id, data_cid)
                );
            """)
            conn.commit()
        except sqlite3.Error as e:
            raise StorageBackendError("open", str(e)) from e
        self._conn = conn

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def _require_conn(self, operation: str) -> sqlite3.Connection:
        if self._conn is None:
            raise StoreNotOpenError(operation)
        return self._conn

    def storage_info(self) -> dict[str, Any]:
        return {"backend": "sqlite", "db_path": self.db_path, "open": self._conn is not None}

    def put(
        self,
        tenant: str,
        record_id: str,
        data_cid: str,
        data_stream: DataSource,
        *,
        signal: CancellationSignal | None = None,
    ) -> DataStorePutResult:
        conn = self._require_conn("put")
        raise_if_cancelled(signal, "data_put")
        data = read_data(data_stream)
        try:
            with conn:
                conn.execute(
                    "INSERT OR REPLACE INTO data_store (tenant, record_id, data_cid, data) "
                    "VALUES (?, ?, ?, ?)",
                    (tenant, record_id, data_cid, data),
                )
        except sqlite3.Error as e:
            raise StorageBackendError(
                "data_put", str(e), tenant=tenant, key=f"{record_id}|{data_cid}"
            ) from e
        return DataStorePutResult(data_size=len(data))

    def get(
        self,
        tenant: str,
        record_id: str,
        data_cid: str,
        *,
        signal: CancellationSignal | None = None,
    ) -> DataStoreGetResult | None:
        conn = self._require_conn("get")
        raise_if_cancelled(signal, "data_get")
        try:
            row = conn.execute(
                "SELECT data FROM data_store WHERE tenant = ? AND record_id = ? AND data_cid = ?",
                (tenant, record_id, data_cid),
            ).fetchone()
        except sqlite3.Error as e:
            raise StorageBackendError(
                "data_get", str(e), tenant=tenant, key=f"{record_id}|{data_cid}"
            ) from e
        if row is None:
            return None
        return bytes_result(bytes(row[0]))

    def delete(
        self,
        tenant: str,
        record_id: str,
        data_cid: str,
        *,
        signal: CancellationSignal | None = None,
    ) -> None:
        conn = self._require_conn("delete")
        raise_if_cancelled(signal, "data_delete")
        try:
            with conn:
                conn.execute(
                    "DELETE FROM data_store WHERE tenant = ? AND record_id = ? AND data_cid = ?",
                    (tenant, record_id, data_cid),
                )
        except sqlite3.Error as e:
            raise StorageBackendError(
                "data_delete", str(e), tenant=tenant, key=f"{record_id}|{data_cid}"
            ) from e

    def clear(
        self, tenant: str | None = None, *, signal: CancellationSignal | None = None
    ) -> int:
        conn = self._require_conn("clear")
        raise_if_cancelled(signal, "data_clear")
        try:
            with conn:
                if tenant is None:
                    cur = conn.execute("DELETE FROM data_store")
                else:
                    cur = conn.execute("DELETE FROM data_store WHERE tenant = ?", (tenant,))
        except sqlite3.Error as e:
            raise StorageBackendError("data_clear", str(e), tenant=tenant) from e
        return cur.rowcount
