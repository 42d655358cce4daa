"""msgstore message commands: init, put, get, query, delete, clear."""

from __future__ import annotations

import base64
import json
from pathlib import Path
from typing import Any, Optional

import typer

from messagestore.cli import _exitcodes as ec
from messagestore.cli._filters import parse_cli_filters, parse_pairs
from messagestore.cli._output import print_error, print_object, print_table
from messagestore.cli._storage import open_data, open_messages
from messagestore.encoding import ENCODED_DATA_FIELD, message_cid
from messagestore.errors import MessageStoreError
from messagestore.sorting import SORT_PROPERTIES, MessageSort, SortDirection
from messagestore.storage import Pagination


def _fail(e: Exception) -> typer.Exit:
    print_error(str(e))
    return typer.Exit(ec.BACKEND_ERROR if isinstance(e, MessageStoreError) else ec.GENERAL_ERROR)


def init_cmd() -> None:
    """Provision the message and data stores (idempotent)."""
    from messagestore.cli import state

    try:
        store = open_messages()
        info = store.storage_info()
        store.close()
        data_store = open_data()
        data_info = data_store.storage_info()
        data_store.close()
    except Exception as e:
        raise _fail(e)
    print_object({"messages": info, "data": data_info}, json_mode=state.json_output)


def _offload_payload(tenant: str, message: dict[str, Any], threshold: int) -> dict[str, Any]:
    """Move ``encodedData`` larger than ``threshold`` bytes into the data store."""
    encoded = message.get(ENCODED_DATA_FIELD)
    if encoded is None:
        return message
    payload = base64.urlsafe_b64decode(encoded + "=" * (-len(encoded) % 4))
    if len(payload) <= threshold:
        return message

    record_id = message.get("recordId")
    data_cid = message.get("descriptor", {}).get("dataCid")
    if not record_id or not data_cid:
        raise ValueError("Offloading data requires 'recordId' and 'descriptor.dataCid'")

    store = open_data()
    try:
        store.put(tenant, record_id, data_cid, payload)
    finally:
        store.close()
    return {k: v for k, v in message.items() if k != ENCODED_DATA_FIELD}


def put_cmd(
    tenant: str = typer.Argument(..., help="Tenant"),
    message_file: Path = typer.Argument(..., help="JSON file holding the message"),
    index_args: Optional[list[str]] = typer.Option(
        None, "--index", help="NAME=VALUE index (repeatable)"
    ),
    data_threshold: Optional[int] = typer.Option(
        None,
        "--data-threshold",
        help="Move encodedData larger than this many bytes to the data store",
    ),
) -> None:
    """Store a message with its indexes."""
    from messagestore.cli import state

    try:
        message = json.loads(message_file.read_text())
        indexes = parse_pairs(index_args)
    except (OSError, ValueError) as e:
        print_error(str(e))
        raise typer.Exit(ec.USAGE_ERROR)

    try:
        if data_threshold is not None:
            message = _offload_payload(tenant, message, data_threshold)
        store = open_messages()
        try:
            store.put(tenant, message, indexes)
        finally:
            store.close()
    except Exception as e:
        raise _fail(e)
    print_object(
        {"tenant": tenant, "messageCid": message_cid(message)}, json_mode=state.json_output
    )


def get_cmd(
    tenant: str = typer.Argument(..., help="Tenant"),
    cid: str = typer.Argument(..., help="Message CID"),
) -> None:
    """Print one message."""
    try:
        store = open_messages()
        try:
            message = store.get(tenant, cid)
        finally:
            store.close()
    except Exception as e:
        raise _fail(e)
    if message is None:
        print_error(f"Message '{cid}' not found for tenant '{tenant}'")
        raise typer.Exit(ec.NOT_FOUND)
    print(json.dumps(message, indent=2))


def query_cmd(
    tenant: str = typer.Argument(..., help="Tenant"),
    filter_args: Optional[list[str]] = typer.Option(
        None, "--filter", help="NAME=VALUE filter (repeatable)"
    ),
    any_of: bool = typer.Option(False, "--or", help="Match any filter instead of all"),
    sort: str = typer.Option("messageTimestamp", "--sort", help="Sort dimension"),
    descending: bool = typer.Option(False, "--desc", help="Sort descending"),
    limit: Optional[int] = typer.Option(None, "--limit", help="Page size"),
    cursor: Optional[str] = typer.Option(None, "--cursor", help="Cursor from a previous page"),
) -> None:
    """Query one page of messages."""
    from messagestore.cli import state

    if sort not in SORT_PROPERTIES:
        print_error(f"Unknown sort '{sort}'. Valid: {', '.join(SORT_PROPERTIES)}")
        raise typer.Exit(ec.USAGE_ERROR)
    try:
        filters = parse_cli_filters(filter_args, any_of=any_of)
    except ValueError as e:
        print_error(str(e))
        raise typer.Exit(ec.USAGE_ERROR)

    direction = SortDirection.DESCENDING if descending else SortDirection.ASCENDING
    message_sort = MessageSort.from_mapping({sort: direction})

    try:
        store = open_messages()
        try:
            result = store.query(
                tenant, filters, message_sort, Pagination(limit=limit, cursor=cursor)
            )
        finally:
            store.close()
    except Exception as e:
        raise _fail(e)

    if state.json_output:
        print(json.dumps({"messages": result.messages, "cursor": result.cursor}, indent=2))
        return

    rows = []
    for message in result.messages:
        descriptor = message.get("descriptor", {})
        rows.append(
            [
                message_cid(message),
                descriptor.get("interface", ""),
                descriptor.get("method", ""),
                descriptor.get(sort, ""),
            ]
        )
    print_table(["messageCid", "interface", "method", sort], rows)
    if result.cursor:
        print(f"\ncursor: {result.cursor}")


def delete_cmd(
    tenant: str = typer.Argument(..., help="Tenant"),
    cid: str = typer.Argument(..., help="Message CID"),
) -> None:
    """Delete one message (no error if absent)."""
    try:
        store = open_messages()
        try:
            store.delete(tenant, cid)
        finally:
            store.close()
    except Exception as e:
        raise _fail(e)


def clear_cmd(
    tenant: Optional[str] = typer.Option(None, "--tenant", help="Only clear this tenant"),
    yes: bool = typer.Option(False, "--yes", help="Confirm deletion"),
) -> None:
    """Delete all messages, or all messages of one tenant."""
    from messagestore.cli import state

    if not yes:
        print_error("Refusing to clear without --yes")
        raise typer.Exit(ec.USAGE_ERROR)
    try:
        store = open_messages()
        try:
            deleted = store.clear(tenant)
        finally:
            store.close()
    except Exception as e:
        raise _fail(e)
    print_object({"deleted": deleted}, json_mode=state.json_output)
