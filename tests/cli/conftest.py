"""Shared fixtures for CLI tests."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

import pytest
from typer.testing import CliRunner

from messagestore.cli import app
from messagestore.storage_sqlite import SqliteMessageStore

# Reuse the message builders from the main conftest
from tests.conftest import indexes_for, make_message

if TYPE_CHECKING:
    from click.testing import Result

TENANT = "did:example:alice"


@pytest.fixture
def runner():
    """Create a CLI test runner."""
    return CliRunner()


@pytest.fixture
def cli_db(tmp_path):
    """Create a temp DB path for the CLI to use."""
    return str(tmp_path / "cli_test.db")


@pytest.fixture
def seeded_messages():
    return [make_message(n, method="Delete" if n == 2 else "Write") for n in range(3)]


@pytest.fixture
def seeded_db(cli_db, seeded_messages):
    """Create a DB with some seed messages."""
    with SqliteMessageStore(cli_db) as store:
        for message in seeded_messages:
            store.put(TENANT, message, indexes_for(message))
    return cli_db


@pytest.fixture
def message_file(tmp_path):
    """Write a message to disk and return its path."""

    def _write(message: dict, name: str = "message.json") -> str:
        path = tmp_path / name
        path.write_text(json.dumps(message))
        return str(path)

    return _write


def invoke(runner: CliRunner, args: list[str], db_path: str | None = None) -> "Result":
    """Invoke CLI with proper state setup."""
    if db_path:
        # Inject --storage-uri before subcommand
        args = ["--storage-uri", f"sqlite:///{db_path}"] + args
    result = runner.invoke(app, args, catch_exceptions=False)
    return result
