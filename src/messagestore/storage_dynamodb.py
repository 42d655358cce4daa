"""DynamoDB message and data stores.

Message table layout:

- Primary key: ``tenant`` (HASH), ``messageCid`` (RANGE).
- Global secondary indexes ``dateCreated``, ``datePublished`` and
  ``messageTimestamp``, each ``tenant`` (HASH) plus the dimension (RANGE),
  projecting all attributes.
- Indexed scalar attributes and ``tag.*`` attributes live on the message item
  itself, so a put is a single-item write.

Data table layout: ``tenant`` (HASH), ``recordIdDataCid`` (RANGE) holding
``"<recordId>|<dataCid>"``, with the payload in the binary ``data`` attribute.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any, Union

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from messagestore.cancellation import CancellationSignal, raise_if_cancelled
from messagestore.config import StoreConfig
from messagestore.cursor import ContinuationCursor, ExhaustedCursor
from messagestore.encoding import GenericMessage, decode_message, encode_message
from messagestore.errors import StorageBackendError, StoreNotOpenError
from messagestore.filters import Filter
from messagestore.indexes import RESERVED_ATTRIBUTES, KeyValues, TagValue, project_indexes
from messagestore.pagination import IndexedRow, Window, collect_page
from messagestore.sorting import SORT_PROPERTIES, MessageSort
from messagestore.storage import (
    DataSource,
    DataStoreGetResult,
    DataStorePutResult,
    Pagination,
    QueryPlan,
    QueryResult,
    bytes_result,
    page_to_result,
    plan_query,
    read_data,
)

logger = logging.getLogger(__name__)

_BACKEND_ERRORS = (ClientError, BotoCoreError)


def _make_client(config: StoreConfig) -> Any:
    session = boto3.Session(region_name=config.dynamodb_region)
    return session.client(
        "dynamodb",
        region_name=config.dynamodb_region,
        endpoint_url=config.dynamodb_endpoint_url,
        config=BotoConfig(
            connect_timeout=config.request_timeout_s,
            read_timeout=config.request_timeout_s,
            retries={"max_attempts": config.max_attempts, "mode": "standard"},
        ),
    )


def _error_code(err: Exception) -> str:
    if isinstance(err, ClientError):
        return str(err.response.get("Error", {}).get("Code", ""))
    return ""


def _describe(err: Exception) -> str:
    if isinstance(err, ClientError):
        error = err.response.get("Error", {})
        return f"{error.get('Code', 'Unknown')}: {error.get('Message', '')}".rstrip(": ")
    return str(err)


def _ensure_table(
    client: Any,
    *,
    table_name: str,
    hash_key: str,
    range_key: str,
    index_keys: Sequence[str] = (),
) -> bool:
    """Create ``table_name`` unless it exists. Returns True when it was created."""
    try:
        client.describe_table(TableName=table_name)
        return False
    except _BACKEND_ERRORS as e:
        if _error_code(e) != "ResourceNotFoundException":
            raise StorageBackendError("open", _describe(e), key=table_name) from e

    attribute_names = [hash_key, range_key, *index_keys]
    kwargs: dict[str, Any] = {
        "TableName": table_name,
        "AttributeDefinitions": [
            {"AttributeName": name, "AttributeType": "S"} for name in attribute_names
        ],
        "KeySchema": [
            {"AttributeName": hash_key, "KeyType": "HASH"},
            {"AttributeName": range_key, "KeyType": "RANGE"},
        ],
        "BillingMode": "PAY_PER_REQUEST",
        "TableClass": "STANDARD",
    }
    if index_keys:
        kwargs["GlobalSecondaryIndexes"] = [
            {
                "IndexName": name,
                "KeySchema": [
                    {"AttributeName": hash_key, "KeyType": "HASH"},
                    {"AttributeName": name, "KeyType": "RANGE"},
                ],
                "Projection": {"ProjectionType": "ALL"},
            }
            for name in index_keys
        ]

    try:
        client.create_table(**kwargs)
        logger.info("Created DynamoDB table %s", table_name)
    except _BACKEND_ERRORS as e:
        # Another process created it first.
        if _error_code(e) != "ResourceInUseException":
            raise StorageBackendError("open", _describe(e), key=table_name) from e

    try:
        client.get_waiter("table_exists").wait(TableName=table_name)
    except _BACKEND_ERRORS as e:
        raise StorageBackendError("open", _describe(e), key=table_name) from e
    return True


def _drain_table(
    client: Any,
    *,
    table_name: str,
    key_names: tuple[str, str],
    tenant: str | None,
    window_size: int,
    signal: CancellationSignal | None,
    operation: str,
) -> int:
    """Delete every item of ``table_name`` (or of one tenant) window by window.

    Not transactional: on failure the items deleted so far stay deleted and a
    re-run continues with what remains.
    """
    hash_key, range_key = key_names
    deleted = 0
    start_key: dict[str, Any] | None = None

    while True:
        raise_if_cancelled(signal, operation)
        kwargs: dict[str, Any] = {
            "TableName": table_name,
            "Limit": window_size,
            "ProjectionExpression": "#h, #r",
            "ExpressionAttributeNames": {"#h": hash_key, "#r": range_key},
        }
        if start_key is not None:
            kwargs["ExclusiveStartKey"] = start_key
        try:
            if tenant is None:
                resp = client.scan(**kwargs)
            else:
                kwargs["KeyConditionExpression"] = "#h = :tenant"
                kwargs["ExpressionAttributeValues"] = {":tenant": {"S": tenant}}
                resp = client.query(**kwargs)
        except _BACKEND_ERRORS as e:
            raise StorageBackendError(operation, _describe(e), tenant=tenant) from e

        for item in resp.get("Items", []):
            raise_if_cancelled(signal, operation)
            key = {hash_key: item[hash_key], range_key: item[range_key]}
            try:
                client.delete_item(TableName=table_name, Key=key)
            except _BACKEND_ERRORS as e:
                raise StorageBackendError(
                    operation,
                    _describe(e),
                    tenant=item[hash_key].get("S"),
                    key=item[range_key].get("S"),
                ) from e
            deleted += 1

        start_key = resp.get("LastEvaluatedKey")
        if start_key is None:
            break

    logger.info("Cleared %d item(s) from DynamoDB table %s", deleted, table_name)
    return deleted


def _tag_attribute(value: TagValue) -> dict[str, Any]:
    if isinstance(value, list):
        return {"L": [{"S": v} for v in value]}
    return {"S": value}


def _plain_value(attribute: dict[str, Any]) -> Any:
    if "S" in attribute:
        return attribute["S"]
    if "N" in attribute:
        return attribute["N"]
    if "L" in attribute:
        return [_plain_value(v) for v in attribute["L"]]
    if "SS" in attribute:
        return list(attribute["SS"])
    if "BOOL" in attribute:
        return "true" if attribute["BOOL"] else "false"
    return None


def _item_to_row(item: dict[str, Any], sort_property: str) -> IndexedRow:
    encoded_data = item.get("encodedData")
    return IndexedRow(
        message_cid=item["messageCid"]["S"],
        sort_value=item[sort_property]["S"],
        encoded_bytes=bytes(item["encodedMessageBytes"]["B"]),
        encoded_data=encoded_data["S"] if encoded_data is not None else None,
        # Only caller-supplied index attributes are filterable.
        attributes={
            name: _plain_value(value)
            for name, value in item.items()
            if name not in RESERVED_ATTRIBUTES
        },
    )


class DynamoMessageStore:
    """DynamoDB-backed message store.

    The boto3 client is owned by the store: it is created on ``open()`` and
    released on ``close()``, unless one was injected by the caller.
    """

    def __init__(self, *, config: StoreConfig | None = None, client: Any = None) -> None:
        self._config = config or StoreConfig()
        self.table_name = self._config.table_name(self._config.message_table_name)
        self._client = client
        self._owns_client = client is None
        self._opened = False

    def __enter__(self) -> DynamoMessageStore:
        self.open()
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def open(self) -> None:
        if self._opened:
            return
        if self._client is None:
            self._client = _make_client(self._config)
        if self._config.create_tables:
            _ensure_table(
                self._client,
                table_name=self.table_name,
                hash_key="tenant",
                range_key="messageCid",
                index_keys=SORT_PROPERTIES,
            )
        self._opened = True

    def close(self) -> None:
        if self._client is not None and self._owns_client:
            self._client.close()
            self._client = None
        self._opened = False

    def _require_client(self, operation: str) -> Any:
        if not self._opened:
            raise StoreNotOpenError(operation)
        return self._client

    def storage_info(self) -> dict[str, Any]:
        return {
            "backend": "dynamodb",
            "table_name": self.table_name,
            "endpoint_url": self._config.dynamodb_endpoint_url,
            "open": self._opened,
        }

    def put(
        self,
        tenant: str,
        message: GenericMessage,
        indexes: KeyValues,
        *,
        signal: CancellationSignal | None = None,
    ) -> None:
        client = self._require_client("put")
        raise_if_cancelled(signal, "put")

        encoded = encode_message(message)
        scalars, tags = project_indexes(indexes)
        item: dict[str, Any] = {
            "tenant": {"S": tenant},
            "messageCid": {"S": encoded.message_cid},
            "encodedMessageBytes": {"B": encoded.encoded_bytes},
        }
        for name, value in tags.items():
            item[name] = _tag_attribute(value)
        for name, value in scalars.items():
            item[name] = {"S": value}
        if encoded.encoded_data is not None:
            item["encodedData"] = {"S": encoded.encoded_data}

        try:
            client.put_item(TableName=self.table_name, Item=item)
        except _BACKEND_ERRORS as e:
            raise StorageBackendError(
                "put", _describe(e), tenant=tenant, key=encoded.message_cid
            ) from e

    def get(
        self,
        tenant: str,
        cid: str,
        *,
        signal: CancellationSignal | None = None,
    ) -> GenericMessage | None:
        client = self._require_client("get")
        raise_if_cancelled(signal, "get")
        try:
            resp = client.get_item(
                TableName=self.table_name,
                Key={"tenant": {"S": tenant}, "messageCid": {"S": cid}},
                ProjectionExpression="encodedMessageBytes, encodedData",
            )
        except _BACKEND_ERRORS as e:
            raise StorageBackendError("get", _describe(e), tenant=tenant, key=cid) from e

        item = resp.get("Item")
        if not item:
            return None
        encoded_data = item.get("encodedData")
        return decode_message(
            bytes(item["encodedMessageBytes"]["B"]),
            encoded_data["S"] if encoded_data is not None else None,
            expected_cid=cid,
        )

    def query(
        self,
        tenant: str,
        filters: Sequence[Filter],
        message_sort: Union[MessageSort, dict[str, int], None] = None,
        pagination: Pagination | None = None,
        *,
        signal: CancellationSignal | None = None,
    ) -> QueryResult:
        client = self._require_client("query")
        raise_if_cancelled(signal, "query")
        plan = plan_query(tenant, filters, message_sort, pagination)
        if isinstance(plan.cursor, ExhaustedCursor):
            return QueryResult(messages=[])

        def fetch_window(start_key: dict[str, Any] | None) -> Window:
            kwargs = self._window_query(plan, start_key)
            try:
                resp = client.query(**kwargs)
            except _BACKEND_ERRORS as e:
                raise StorageBackendError("query", _describe(e), tenant=tenant) from e
            items = resp.get("Items", [])
            logger.debug(
                "Window on %s.%s returned %d item(s)",
                self.table_name,
                plan.sort.index_name,
                len(items),
            )
            return Window(
                rows=[_item_to_row(item, plan.sort.property) for item in items],
                next_key=resp.get("LastEvaluatedKey"),
            )

        page = collect_page(
            fetch_window,
            sort=plan.sort,
            scope=plan.scope,
            filter_expr=plan.filter_expr,
            limit=plan.limit,
            cursor=plan.cursor,
            signal=signal,
        )
        return page_to_result(page, signal=signal)

    def _window_query(
        self, plan: QueryPlan, start_key: dict[str, Any] | None
    ) -> dict[str, Any]:
        """Build one windowed query against the plan's secondary index.

        With a cursor the key condition starts at the cursor's sort value
        inclusively; rows tying with it are excluded by messageCid afterwards.
        """
        names = {"#tenant": "tenant"}
        values: dict[str, Any] = {":tenant": {"S": plan.tenant}}
        condition = "#tenant = :tenant"
        if isinstance(plan.cursor, ContinuationCursor):
            names["#sort"] = plan.sort.property
            values[":cursor"] = {"S": plan.cursor.value}
            op = ">=" if plan.sort.ascending else "<="
            condition += f" AND #sort {op} :cursor"

        kwargs: dict[str, Any] = {
            "TableName": self.table_name,
            "IndexName": plan.sort.index_name,
            "KeyConditionExpression": condition,
            "ExpressionAttributeNames": names,
            "ExpressionAttributeValues": values,
            "ScanIndexForward": plan.sort.ascending,
            "Limit": self._config.query_window_size,
        }
        if start_key is not None:
            kwargs["ExclusiveStartKey"] = start_key
        return kwargs

    def delete(
        self,
        tenant: str,
        cid: str,
        *,
        signal: CancellationSignal | None = None,
    ) -> None:
        client = self._require_client("delete")
        raise_if_cancelled(signal, "delete")
        try:
            client.delete_item(
                TableName=self.table_name,
                Key={"tenant": {"S": tenant}, "messageCid": {"S": cid}},
            )
        except _BACKEND_ERRORS as e:
            raise StorageBackendError("delete", _describe(e), tenant=tenant, key=cid) from e

    def clear(
        self,
        tenant: str | None = None,
        *,
        signal: CancellationSignal | None = None,
    ) -> int:
        client = self._require_client("clear")
        return _drain_table(
            client,
            table_name=self.table_name,
            key_names=("tenant", "messageCid"),
            tenant=tenant,
            window_size=self._config.clear_window_size,
            signal=signal,
            operation="clear",
        )


def _data_key(tenant: str, record_id: str, data_cid: str) -> dict[str, Any]:
    return {"tenant": {"S": tenant}, "recordIdDataCid": {"S": f"{record_id}|{data_cid}"}}


class DynamoDataStore:
    """DynamoDB-backed data store. Payloads are bounded by the item size limit."""

    def __init__(self, *, config: StoreConfig | None = None, client: Any = None) -> None:
        self._config = config or StoreConfig()
        self.table_name = self._config.table_name(self._config.data_table_name)
        self._client = client
        self._owns_client = client is None
        self._opened = False

    def __enter__(self) -> DynamoDataStore:
        self.open()
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def open(self) -> None:
        if self._opened:
            return
        if self._client is None:
            self._client = _make_client(self._config)
        if self._config.create_tables:
            _ensure_table(
                self._client,
                table_name=self.table_name,
                hash_key="tenant",
                range_key="recordIdDataCid",
            )
        self._opened = True

    def close(self) -> None:
        if self._client is not None and self._owns_client:
            self._client.close()
            self._client = None
        self._opened = False

    def _require_client(self, operation: str) -> Any:
        if not self._opened:
            raise StoreNotOpenError(operation)
        return self._client

    def storage_info(self) -> dict[str, Any]:
        return {
            "backend": "dynamodb",
            "table_name": self.table_name,
            "endpoint_url": self._config.dynamodb_endpoint_url,
            "open": self._opened,
        }

    def put(
        self,
        tenant: str,
        record_id: str,
        data_cid: str,
        data_stream: DataSource,
        *,
        signal: CancellationSignal | None = None,
    ) -> DataStorePutResult:
        client = self._require_client("put")
        raise_if_cancelled(signal, "data_put")
        data = read_data(data_stream)
        item = {
            **_data_key(tenant, record_id, data_cid),
            "recordId": {"S": record_id},
            "dataCid": {"S": data_cid},
            "data": {"B": data},
        }
        try:
            client.put_item(TableName=self.table_name, Item=item)
        except _BACKEND_ERRORS as e:
            raise StorageBackendError(
                "data_put", _describe(e), tenant=tenant, key=f"{record_id}|{data_cid}"
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
        client = self._require_client("get")
        raise_if_cancelled(signal, "data_get")
        try:
            resp = client.get_item(
                TableName=self.table_name, Key=_data_key(tenant, record_id, data_cid)
            )
        except _BACKEND_ERRORS as e:
            raise StorageBackendError(
                "data_get", _describe(e), tenant=tenant, key=f"{record_id}|{data_cid}"
            ) from e
        item = resp.get("Item")
        if not item:
            return None
        return bytes_result(bytes(item["data"]["B"]))

    def delete(
        self,
        tenant: str,
        record_id: str,
        data_cid: str,
        *,
        signal: CancellationSignal | None = None,
    ) -> None:
        client = self._require_client("delete")
        raise_if_cancelled(signal, "data_delete")
        try:
            client.delete_item(
                TableName=self.table_name, Key=_data_key(tenant, record_id, data_cid)
            )
        except _BACKEND_ERRORS as e:
            raise StorageBackendError(
                "data_delete", _describe(e), tenant=tenant, key=f"{record_id}|{data_cid}"
            ) from e

    def clear(
        self, tenant: str | None = None, *, signal: CancellationSignal | None = None
    ) -> int:
        client = self._require_client("clear")
        raise_if_cancelled(signal, "data_clear")
        return _drain_table(
            client,
            table_name=self.table_name,
            key_names=("tenant", "recordIdDataCid"),
            tenant=tenant,
            window_size=self._config.clear_window_size,
            signal=signal,
            operation="data_clear",
        )
