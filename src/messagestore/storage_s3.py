"""S3 data store for payloads too large to keep inline with their message."""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from messagestore.cancellation import CancellationSignal, raise_if_cancelled
from messagestore.config import StoreConfig
from messagestore.errors import StorageBackendError, StoreNotOpenError
from messagestore.storage import (
    DataSource,
    DataStoreGetResult,
    DataStorePutResult,
    bytes_result,
    read_data,
)

logger = logging.getLogger(__name__)


def _segment(value: str) -> str:
    return quote(value, safe="")


class S3DataStore:
    """S3-backed data store.

    Objects live at ``<prefix>/<tenant>/<recordId>/<dataCid>`` with each segment
    percent-encoded. The bucket must already exist.
    """

    def __init__(
        self,
        *,
        bucket: str,
        prefix: str = "",
        config: StoreConfig | None = None,
        client: Any = None,
    ) -> None:
        self.bucket = bucket
        self.prefix = prefix.strip("/")
        self._config = config or StoreConfig()
        self._s3 = client
        self._owns_client = client is None
        self._opened = False

    def __enter__(self) -> S3DataStore:
        self.open()
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def open(self) -> None:
        if self._opened:
            return
        if self._s3 is None:
            session = boto3.Session(region_name=self._config.s3_region)
            self._s3 = session.client(
                "s3",
                region_name=self._config.s3_region,
                endpoint_url=self._config.s3_endpoint_url,
                config=BotoConfig(
                    connect_timeout=self._config.request_timeout_s,
                    read_timeout=self._config.request_timeout_s,
                    retries={"max_attempts": self._config.max_attempts, "mode": "standard"},
                ),
            )
        try:
            self._s3.head_bucket(Bucket=self.bucket)
        except (ClientError, BotoCoreError) as e:
            if self._owns_client:
                self._s3.close()
                self._s3 = None
            raise StorageBackendError("open", str(e), key=self.bucket) from e
        self._opened = True

    def close(self) -> None:
        if self._s3 is not None and self._owns_client:
            self._s3.close()
            self._s3 = None
        self._opened = False

    def _require_client(self, operation: str) -> Any:
        if not self._opened:
            raise StoreNotOpenError(operation)
        return self._s3

    def storage_info(self) -> dict[str, Any]:
        return {
            "backend": "s3",
            "bucket": self.bucket,
            "prefix": self.prefix,
            "open": self._opened,
        }

    # --- Key/object helpers ---

    def _k(self, rel_path: str) -> str:
        return f"{self.prefix}/{rel_path}" if self.prefix else rel_path

    def _object_key(self, tenant: str, record_id: str, data_cid: str) -> str:
        return self._k(f"{_segment(tenant)}/{_segment(record_id)}/{_segment(data_cid)}")

    def _is_not_found(self, err: Exception) -> bool:
        if isinstance(err, ClientError):
            code = err.response.get("Error", {}).get("Code", "")
            return code in {"NoSuchKey", "404", "NotFound"}
        return False

    # --- Operations ---

    def put(
        self,
        tenant: str,
        record_id: str,
        data_cid: str,
        data_stream: DataSource,
        *,
        signal: CancellationSignal | None = None,
    ) -> DataStorePutResult:
        s3 = self._require_client("put")
        raise_if_cancelled(signal, "data_put")
        data = read_data(data_stream)
        key = self._object_key(tenant, record_id, data_cid)
        try:
            s3.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=data,
                ContentType="application/octet-stream",
            )
        except (ClientError, BotoCoreError) as e:
            raise StorageBackendError("data_put", str(e), tenant=tenant, key=key) from e
        return DataStorePutResult(data_size=len(data))

    def get(
        self,
        tenant: str,
        record_id: str,
        data_cid: str,
        *,
        signal: CancellationSignal | None = None,
    ) -> DataStoreGetResult | None:
        s3 = self._require_client("get")
        raise_if_cancelled(signal, "data_get")
        key = self._object_key(tenant, record_id, data_cid)
        try:
            resp = s3.get_object(Bucket=self.bucket, Key=key)
            body = resp["Body"].read()
        except (ClientError, BotoCoreError) as e:
            if self._is_not_found(e):
                return None
            raise StorageBackendError("data_get", str(e), tenant=tenant, key=key) from e
        return bytes_result(body)

    def delete(
        self,
        tenant: str,
        record_id: str,
        data_cid: str,
        *,
        signal: CancellationSignal | None = None,
    ) -> None:
        s3 = self._require_client("delete")
        raise_if_cancelled(signal, "data_delete")
        key = self._object_key(tenant, record_id, data_cid)
        try:
            s3.delete_object(Bucket=self.bucket, Key=key)
        except (ClientError, BotoCoreError) as e:
            raise StorageBackendError("data_delete", str(e), tenant=tenant, key=key) from e

    def clear(
        self, tenant: str | None = None, *, signal: CancellationSignal | None = None
    ) -> int:
        """Delete all objects under the store prefix, or under one tenant."""
        s3 = self._require_client("clear")
        raise_if_cancelled(signal, "data_clear")
        if tenant is not None:
            list_prefix = self._k(f"{_segment(tenant)}/")
        else:
            list_prefix = f"{self.prefix}/" if self.prefix else ""

        deleted = 0
        try:
            paginator = s3.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=self.bucket, Prefix=list_prefix):
                raise_if_cancelled(signal, "data_clear")
                objects = [{"Key": obj["Key"]} for obj in page.get("Contents", [])]
                if not objects:
                    continue
                resp = s3.delete_objects(
                    Bucket=self.bucket, Delete={"Objects": objects, "Quiet": True}
                )
                errors = resp.get("Errors", [])
                if errors:
                    first = errors[0]
                    raise StorageBackendError(
                        "data_clear",
                        f"{len(errors)} object(s) not deleted: {first.get('Code')}",
                        tenant=tenant,
                        key=first.get("Key"),
                    )
                deleted += len(objects)
        except (ClientError, BotoCoreError) as e:
            raise StorageBackendError("data_clear", str(e), tenant=tenant) from e

        logger.info("Cleared %d object(s) from s3://%s/%s", deleted, self.bucket, list_prefix)
        return deleted
