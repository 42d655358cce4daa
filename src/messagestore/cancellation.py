"""Cooperative cancellation checks."""

from __future__ import annotations

from typing import Protocol

from messagestore.errors import OperationCancelledError


class CancellationSignal(Protocol):
    """Anything exposing `is_set()`, e.g. `threading.Event`."""

    def is_set(self) -> bool: ...


def raise_if_cancelled(signal: CancellationSignal | None, operation: str) -> None:
    if signal is not None and signal.is_set():
        raise OperationCancelledError(operation)
