"""Messagestore CLI: operator console for inspecting and managing stores."""

from __future__ import annotations

from typing import Optional

import typer
from click.core import ParameterSource

from messagestore.cli import data, messages

app = typer.Typer(
    name="msgstore",
    help="Messagestore CLI: operator console for inspecting and managing stores.",
    no_args_is_help=True,
)


class _State:
    """Global CLI state shared across subcommands."""

    storage_uri: str | None = None
    data_uri: str | None = None
    json_output: bool = False


state = _State()


def _version_callback(value: bool) -> None:
    if value:
        try:
            from importlib.metadata import version

            v = version("messagestore")
        except Exception:
            v = "unknown"
        print(f"msgstore {v}")
        raise typer.Exit()


@app.callback(invoke_without_command=True)
def main_callback(
    ctx: typer.Context,
    storage_uri: Optional[str] = typer.Option(
        None,
        "--storage-uri",
        envvar="MESSAGESTORE_STORAGE_URI",
        help="Message store URI (e.g. sqlite:///messages.db or dynamodb://prefix)",
    ),
    data_uri: Optional[str] = typer.Option(
        None,
        "--data-uri",
        envvar="MESSAGESTORE_DATA_URI",
        help="Data store URI (defaults to --storage-uri; also accepts s3://bucket/prefix)",
    ),
    json_output: bool = typer.Option(False, "--json", help="JSON output when supported"),
    version: bool = typer.Option(
        False, "--version", help="Show version", is_eager=True, callback=_version_callback
    ),
) -> None:
    """Global options for all msgstore commands."""
    from messagestore.storage import parse_storage_target

    for uri in (storage_uri, data_uri):
        if uri:
            try:
                parse_storage_target(uri)
            except Exception as e:
                raise typer.BadParameter(str(e))

    # An explicit --storage-uri wins over a data URI not given on the command line.
    storage_source = ctx.get_parameter_source("storage_uri")
    data_source = ctx.get_parameter_source("data_uri")
    if storage_source == ParameterSource.COMMANDLINE and data_source != ParameterSource.COMMANDLINE:
        data_uri = None

    state.storage_uri = storage_uri
    state.data_uri = data_uri
    state.json_output = json_output
    if ctx.invoked_subcommand is None and not version:
        print(ctx.get_help())
        raise typer.Exit()


app.add_typer(data.app, name="data", help="Manage payloads in the data store")

app.command(name="init")(messages.init_cmd)
app.command(name="put")(messages.put_cmd)
app.command(name="get")(messages.get_cmd)
app.command(name="query")(messages.query_cmd)
app.command(name="delete")(messages.delete_cmd)
app.command(name="clear")(messages.clear_cmd)


def main() -> None:
    """Entry point for the msgstore CLI."""
    app()
