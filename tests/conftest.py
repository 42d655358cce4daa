"""Shared test fixtures for messagestore tests."""

from __future__ import annotations

import copy
import hashlib
import io
from typing import Any, Callable

import pytest
from botocore.exceptions import ClientError

from messagestore.config import StoreConfig
from messagestore.storage import Pagination
from messagestore.storage_dynamodb import DynamoDataStore, DynamoMessageStore
from messagestore.storage_s3 import S3DataStore
from messagestore.storage_sqlite import SqliteDataStore, SqliteMessageStore

# --- Message builders ---


def timestamp(n: int) -> str:
    return f"2024-01-01T00:{n // 60:02d}:{n % 60:02d}.000000Z"


def make_message(
    n: int,
    *,
    interface: str = "Records",
    method: str = "Write",
    message_timestamp: str | None = None,
    date_created: str | None = None,
    date_published: str | None = None,
    **extra: Any,
) -> dict[str, Any]:
    """Build a records-style message whose content is unique per ``n``."""
    descriptor: dict[str, Any] = {
        "interface": interface,
        "method": method,
        "messageTimestamp": message_timestamp or timestamp(n),
        "dateCreated": date_created or timestamp(n),
        "nonce": n,
    }
    if date_published is not None:
        descriptor["datePublished"] = date_published
    message: dict[str, Any] = {"recordId": f"record-{n}", "descriptor": descriptor}
    message.update(extra)
    return message


def indexes_for(message: dict[str, Any], **extra: Any) -> dict[str, Any]:
    """Derive the index map a host would supply for ``message``."""
    descriptor = message["descriptor"]
    indexes: dict[str, Any] = {
        "interface": descriptor["interface"],
        "method": descriptor["method"],
        "messageTimestamp": descriptor["messageTimestamp"],
        "dateCreated": descriptor["dateCreated"],
    }
    if "datePublished" in descriptor:
        indexes["datePublished"] = descriptor["datePublished"]
    indexes.update(extra)
    return indexes


def collect_all(
    store: Any,
    tenant: str,
    filters: list[dict[str, Any]],
    message_sort: Any = None,
    *,
    limit: int,
) -> tuple[list[dict[str, Any]], list[int]]:
    """Follow cursors to the end; return all messages and the page sizes."""
    messages: list[dict[str, Any]] = []
    sizes: list[int] = []
    cursor: str | None = None
    while True:
        result = store.query(tenant, filters, message_sort, Pagination(limit=limit, cursor=cursor))
        messages.extend(result.messages)
        sizes.append(len(result.messages))
        if result.cursor is None:
            return messages, sizes
        cursor = result.cursor


# --- Fake boto3 clients ---


def client_error(code: str, operation: str = "Operation", message: str = "") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": message or code}}, operation)


class _Waiter:
    def wait(self, **kwargs: Any) -> None:
        return None


class FakeDynamoClient:
    """In-memory stand-in for the DynamoDB client calls the stores make.

    Rows that tie on a secondary index key come back in an order unrelated to
    their messageCid, and a full page always carries a LastEvaluatedKey.
    """

    def __init__(self) -> None:
        self.tables: dict[str, dict[str, Any]] = {}
        self.calls: list[str] = []
        self.closed = False
        self._failures: dict[str, tuple[int, Exception]] = {}
        self._counts: dict[str, int] = {}

    # --- test hooks ---

    def fail(self, operation: str, error: Exception, *, after: int = 0) -> None:
        """Raise ``error`` from ``operation`` once it has succeeded ``after`` times."""
        self._failures[operation] = (after, error)

    def _record(self, operation: str) -> None:
        self.calls.append(operation)
        count = self._counts.get(operation, 0)
        self._counts[operation] = count + 1
        failure = self._failures.get(operation)
        if failure is not None and count >= failure[0]:
            raise failure[1]

    def count(self, operation: str) -> int:
        return self._counts.get(operation, 0)

    def items(self, table_name: str) -> list[dict[str, Any]]:
        return list(self.tables[table_name]["items"].values())

    # --- client API ---

    def close(self) -> None:
        self.closed = True

    def describe_table(self, *, TableName: str) -> dict[str, Any]:
        self._record("describe_table")
        if TableName not in self.tables:
            raise client_error("ResourceNotFoundException", "DescribeTable")
        return {"Table": {"TableName": TableName, "TableStatus": "ACTIVE"}}

    def create_table(self, **kwargs: Any) -> dict[str, Any]:
        self._record("create_table")
        name = kwargs["TableName"]
        if name in self.tables:
            raise client_error("ResourceInUseException", "CreateTable")
        schema = {k["KeyType"]: k["AttributeName"] for k in kwargs["KeySchema"]}
        indexes = {
            gsi["IndexName"]: {k["KeyType"]: k["AttributeName"] for k in gsi["KeySchema"]}
            for gsi in kwargs.get("GlobalSecondaryIndexes", [])
        }
        self.tables[name] = {
            "hash": schema["HASH"],
            "range": schema["RANGE"],
            "indexes": indexes,
            "items": {},
            "definition": kwargs,
        }
        return {"TableDescription": {"TableName": name}}

    def get_waiter(self, name: str) -> _Waiter:
        return _Waiter()

    def _table(self, name: str) -> dict[str, Any]:
        if name not in self.tables:
            raise client_error("ResourceNotFoundException")
        return self.tables[name]

    def _pk(self, table: dict[str, Any], key: dict[str, Any]) -> tuple[str, str]:
        return (key[table["hash"]]["S"], key[table["range"]]["S"])

    def put_item(self, *, TableName: str, Item: dict[str, Any]) -> dict[str, Any]:
        self._record("put_item")
        table = self._table(TableName)
        table["items"][self._pk(table, Item)] = copy.deepcopy(Item)
        return {}

    def get_item(
        self,
        *,
        TableName: str,
        Key: dict[str, Any],
        ProjectionExpression: str | None = None,
    ) -> dict[str, Any]:
        self._record("get_item")
        table = self._table(TableName)
        item = table["items"].get(self._pk(table, Key))
        if item is None:
            return {}
        item = copy.deepcopy(item)
        if ProjectionExpression:
            wanted = [name.strip() for name in ProjectionExpression.split(",")]
            item = {k: v for k, v in item.items() if k in wanted}
        return {"Item": item}

    def delete_item(self, *, TableName: str, Key: dict[str, Any]) -> dict[str, Any]:
        self._record("delete_item")
        table = self._table(TableName)
        table["items"].pop(self._pk(table, Key), None)
        return {}

    def _page(
        self,
        ordered: list[dict[str, Any]],
        order: Callable[[dict[str, Any]], tuple[str, ...]],
        reverse: bool,
        key_names: list[str],
        kwargs: dict[str, Any],
    ) -> dict[str, Any]:
        start = kwargs.get("ExclusiveStartKey")
        if start is not None:
            # The start item itself may have been deleted since.
            bound = order(start)
            if reverse:
                ordered = [item for item in ordered if order(item) < bound]
            else:
                ordered = [item for item in ordered if order(item) > bound]
        limit = kwargs.get("Limit")
        page = ordered[:limit] if limit else ordered

        projection = kwargs.get("ProjectionExpression")
        if projection:
            names = kwargs.get("ExpressionAttributeNames", {})
            wanted = [names.get(p.strip(), p.strip()) for p in projection.split(",")]
            items = [{k: v for k, v in item.items() if k in wanted} for item in page]
        else:
            items = page
        resp: dict[str, Any] = {
            "Items": copy.deepcopy(items),
            "Count": len(items),
            "ScannedCount": len(items),
        }
        if limit and len(page) == limit:
            last = page[-1]
            resp["LastEvaluatedKey"] = {name: copy.deepcopy(last[name]) for name in key_names}
        return resp

    def query(self, **kwargs: Any) -> dict[str, Any]:
        self._record("query")
        table = self._table(kwargs["TableName"])
        names = kwargs.get("ExpressionAttributeNames", {})
        values = kwargs.get("ExpressionAttributeValues", {})
        conditions = [c.strip() for c in kwargs["KeyConditionExpression"].split(" AND ")]

        hash_name, _, hash_value = conditions[0].split()
        tenant = values[hash_value]["S"]

        index_name = kwargs.get("IndexName")
        if index_name is not None:
            range_name = table["indexes"][index_name]["RANGE"]
            key_names = [table["hash"], table["range"], range_name]
        else:
            range_name = table["range"]
            key_names = [table["hash"], table["range"]]

        candidates = [
            item
            for item in table["items"].values()
            if item[names[hash_name]]["S"] == tenant and range_name in item
        ]
        if len(conditions) > 1:
            attr, op, placeholder = conditions[1].split()
            bound = values[placeholder]["S"]
            compare: Callable[[str], bool] = {
                ">=": lambda v: v >= bound,
                "<=": lambda v: v <= bound,
                ">": lambda v: v > bound,
                "<": lambda v: v < bound,
                "=": lambda v: v == bound,
            }[op]
            candidates = [item for item in candidates if compare(item[names[attr]]["S"])]

        def order(item: dict[str, Any]) -> tuple[str, ...]:
            tie = hashlib.md5(item[table["range"]]["S"].encode()).hexdigest()
            return (item[range_name]["S"], tie)

        reverse = not kwargs.get("ScanIndexForward", True)
        ordered = sorted(candidates, key=order, reverse=reverse)
        return self._page(ordered, order, reverse, key_names, kwargs)

    def scan(self, **kwargs: Any) -> dict[str, Any]:
        self._record("scan")
        table = self._table(kwargs["TableName"])
        def order(item: dict[str, Any]) -> tuple[str, ...]:
            return self._pk(table, item)

        ordered = sorted(table["items"].values(), key=order)
        return self._page(ordered, order, False, [table["hash"], table["range"]], kwargs)


class _ListObjectsPaginator:
    def __init__(self, client: FakeS3Client) -> None:
        self._client = client

    def paginate(self, *, Bucket: str, Prefix: str = "") -> Any:
        keys = sorted(k for k in self._client.objects.get(Bucket, {}) if k.startswith(Prefix))
        size = self._client.page_size
        for i in range(0, len(keys), size):
            yield {"Contents": [{"Key": k} for k in keys[i : i + size]]}
        if not keys:
            yield {"KeyCount": 0}


class FakeS3Client:
    """In-memory stand-in for the S3 client calls the data store makes."""

    def __init__(self, buckets: tuple[str, ...] = ("payloads",), page_size: int = 2) -> None:
        self.objects: dict[str, dict[str, bytes]] = {b: {} for b in buckets}
        self.page_size = page_size
        self.closed = False

    def close(self) -> None:
        self.closed = True

    def head_bucket(self, *, Bucket: str) -> dict[str, Any]:
        if Bucket not in self.objects:
            raise client_error("404", "HeadBucket", "Not Found")
        return {}

    def put_object(self, *, Bucket: str, Key: str, Body: bytes, **kwargs: Any) -> dict[str, Any]:
        self.objects[Bucket][Key] = bytes(Body)
        return {"ETag": '"etag"'}

    def get_object(self, *, Bucket: str, Key: str) -> dict[str, Any]:
        if Key not in self.objects[Bucket]:
            raise client_error("NoSuchKey", "GetObject")
        return {"Body": io.BytesIO(self.objects[Bucket][Key])}

    def delete_object(self, *, Bucket: str, Key: str) -> dict[str, Any]:
        self.objects[Bucket].pop(Key, None)
        return {}

    def get_paginator(self, name: str) -> _ListObjectsPaginator:
        assert name == "list_objects_v2"
        return _ListObjectsPaginator(self)

    def delete_objects(self, *, Bucket: str, Delete: dict[str, Any]) -> dict[str, Any]:
        for obj in Delete["Objects"]:
            self.objects[Bucket].pop(obj["Key"], None)
        return {}


# --- Fixtures ---


@pytest.fixture
def tmp_db(tmp_path):
    """Create a temporary SQLite database path."""
    return str(tmp_path / "test.db")


@pytest.fixture
def store_config():
    """Small windows so that pagination spans several physical queries."""
    return StoreConfig(query_window_size=2, clear_window_size=2)


@pytest.fixture
def dynamo_client():
    return FakeDynamoClient()


@pytest.fixture
def sqlite_store(tmp_db):
    store = SqliteMessageStore(tmp_db)
    store.open()
    yield store
    store.close()


@pytest.fixture
def dynamo_store(dynamo_client, store_config):
    store = DynamoMessageStore(config=store_config, client=dynamo_client)
    store.open()
    yield store
    store.close()


@pytest.fixture(params=["sqlite", "dynamo"])
def message_store(request):
    """The same contract, run against every message store backend."""
    return request.getfixturevalue(f"{request.param}_store")


@pytest.fixture
def s3_client():
    return FakeS3Client()


@pytest.fixture
def sqlite_data_store(tmp_db):
    store = SqliteDataStore(tmp_db)
    store.open()
    yield store
    store.close()


@pytest.fixture
def dynamo_data_store(dynamo_client, store_config):
    store = DynamoDataStore(config=store_config, client=dynamo_client)
    store.open()
    yield store
    store.close()


@pytest.fixture
def s3_data_store(s3_client, store_config):
    store = S3DataStore(bucket="payloads", prefix="dwn", config=store_config, client=s3_client)
    store.open()
    yield store
    store.close()


@pytest.fixture(params=["sqlite", "dynamo", "s3"])
def data_store(request):
    return request.getfixturevalue(f"{request.param}_data_store")
