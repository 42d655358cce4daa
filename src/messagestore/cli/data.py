"""msgstore data: manage payloads in the data store."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Optional

import typer

from messagestore.cli import _exitcodes as ec
from messagestore.cli._output import print_error, print_object
from messagestore.cli._storage import open_data
from messagestore.errors import MessageStoreError

app = typer.Typer(no_args_is_help=True)


def _fail(e: Exception) -> typer.Exit:
    print_error(str(e))
    return typer.Exit(ec.BACKEND_ERROR if isinstance(e, MessageStoreError) else ec.GENERAL_ERROR)


@app.command(name="put")
def data_put_cmd(
    tenant: str = typer.Argument(..., help="Tenant"),
    record_id: str = typer.Argument(..., help="Record ID"),
    data_cid: str = typer.Argument(..., help="Data CID"),
    source: Path = typer.Argument(..., help="File to store"),
) -> None:
    """Store a payload."""
    from messagestore.cli import state

    try:
        store = open_data()
        try:
            with source.open("rb") as fh:
                result = store.put(tenant, record_id, data_cid, fh)
        finally:
            store.close()
    except Exception as e:
        raise _fail(e)
    print_object({"dataSize": result.data_size}, json_mode=state.json_output)


@app.command(name="get")
def data_get_cmd(
    tenant: str = typer.Argument(..., help="Tenant"),
    record_id: str = typer.Argument(..., help="Record ID"),
    data_cid: str = typer.Argument(..., help="Data CID"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write to file"),
) -> None:
    """Fetch a payload to stdout or a file."""
    try:
        store = open_data()
        try:
            result = store.get(tenant, record_id, data_cid)
            data = result.data_stream.read() if result is not None else None
        finally:
            store.close()
    except Exception as e:
        raise _fail(e)
    if data is None:
        print_error(f"No data for record '{record_id}' / '{data_cid}'")
        raise typer.Exit(ec.NOT_FOUND)
    if output is not None:
        output.write_bytes(data)
    else:
        sys.stdout.buffer.write(data)
        sys.stdout.flush()


@app.command(name="delete")
def data_delete_cmd(
    tenant: str = typer.Argument(..., help="Tenant"),
    record_id: str = typer.Argument(..., help="Record ID"),
    data_cid: str = typer.Argument(..., help="Data CID"),
) -> None:
    """Delete a payload (no error if absent)."""
    try:
        store = open_data()
        try:
            store.delete(tenant, record_id, data_cid)
        finally:
            store.close()
    except Exception as e:
        raise _fail(e)


@app.command(name="clear")
def data_clear_cmd(
    tenant: Optional[str] = typer.Option(None, "--tenant", help="Only clear this tenant"),
    yes: bool = typer.Option(False, "--yes", help="Confirm deletion"),
) -> None:
    """Delete all payloads, or all payloads of one tenant."""
    from messagestore.cli import state

    if not yes:
        print_error("Refusing to clear without --yes")
        raise typer.Exit(ec.USAGE_ERROR)
    try:
        store = open_data()
        try:
            deleted = store.clear(tenant)
        finally:
            store.close()
    except Exception as e:
        raise _fail(e)
    print_object({"deleted": deleted}, json_mode=state.json_output)
