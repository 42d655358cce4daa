"""Structured error types for the message store."""

from __future__ import annotations


class MessageStoreError(Exception):
    """Base error for all message store errors."""


class StoreNotOpenError(MessageStoreError):
    """Raised when an operation runs before `open()` has completed."""

    def __init__(self, operation: str) -> None:
        self.operation = operation
        super().__init__(
            f"Connection to database not open. Call `open` before using `{operation}`."
        )


class RecordEncodeError(MessageStoreError):
    """Raised when a message cannot be canonically encoded."""


class RecordDecodeError(MessageStoreError):
    """Raised when stored message bytes are corrupted or do not match their cid."""

    def __init__(self, detail: str, *, message_cid: str | None = None) -> None:
        self.detail = detail
        self.message_cid = message_cid
        suffix = f" (messageCid={message_cid})" if message_cid else ""
        super().__init__(f"Failed to decode stored message{suffix}: {detail}")


class OperationCancelledError(MessageStoreError):
    """Raised when a cancellation signal is observed."""

    def __init__(self, operation: str) -> None:
        self.operation = operation
        super().__init__(f"Operation '{operation}' was cancelled")


class InvalidCursorError(MessageStoreError):
    """Raised when a pagination cursor is malformed or issued for another query."""


class StorageBackendError(MessageStoreError):
    """Raised when backend storage operations fail."""

    def __init__(
        self,
        operation: str,
        detail: str,
        *,
        tenant: str | None = None,
        key: str | None = None,
    ) -> None:
        self.operation = operation
        self.detail = detail
        self.tenant = tenant
        self.key = key
        context = ""
        if tenant is not None:
            context += f" tenant={tenant}"
        if key is not None:
            context += f" key={key}"
        if context:
            context = f" [{context.strip()}]"
        super().__init__(f"Storage backend error during {operation}{context}: {detail}")
