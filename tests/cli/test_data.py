"""Tests for msgstore data commands."""

import json

from messagestore.cli import app
from tests.cli.conftest import TENANT, invoke


def test_put_get_delete(runner, cli_db, tmp_path):
    source = tmp_path / "payload.bin"
    source.write_bytes(b"\x00\x01payload")

    args = ["--json", "data", "put", TENANT, "rec-1", "cid-1", str(source)]
    result = invoke(runner, args, cli_db)
    assert result.exit_code == 0
    assert json.loads(result.stdout) == {"dataSize": 9}

    target = tmp_path / "out.bin"
    result = invoke(runner, ["data", "get", TENANT, "rec-1", "cid-1", "-o", str(target)], cli_db)
    assert result.exit_code == 0
    assert target.read_bytes() == b"\x00\x01payload"

    assert invoke(runner, ["data", "delete", TENANT, "rec-1", "cid-1"], cli_db).exit_code == 0
    result = invoke(runner, ["data", "get", TENANT, "rec-1", "cid-1"], cli_db)
    assert result.exit_code == 3


def test_get_to_stdout(runner, cli_db, tmp_path):
    source = tmp_path / "payload.txt"
    source.write_bytes(b"plain text")
    invoke(runner, ["data", "put", TENANT, "rec-1", "cid-1", str(source)], cli_db)

    result = invoke(runner, ["data", "get", TENANT, "rec-1", "cid-1"], cli_db)
    assert result.exit_code == 0
    assert result.stdout_bytes == b"plain text"


def test_separate_data_uri(runner, cli_db, tmp_path):
    source = tmp_path / "payload.txt"
    source.write_bytes(b"x")
    data_db = tmp_path / "data.db"

    args = ["--data-uri", f"sqlite:///{data_db}", "data", "put", TENANT, "r", "c", str(source)]
    assert invoke(runner, args, cli_db).exit_code == 0
    assert data_db.exists()


def test_clear(runner, cli_db, tmp_path):
    source = tmp_path / "payload.txt"
    source.write_bytes(b"x")
    for record in ("r1", "r2"):
        invoke(runner, ["data", "put", TENANT, record, "c", str(source)], cli_db)

    assert invoke(runner, ["data", "clear"], cli_db).exit_code == 2
    result = invoke(runner, ["--json", "data", "clear", "--yes"], cli_db)
    assert result.exit_code == 0
    assert json.loads(result.stdout) == {"deleted": 2}


def test_explicit_storage_uri_ignores_env_data_uri(runner, cli_db, tmp_path):
    source = tmp_path / "payload.txt"
    source.write_bytes(b"x")
    env_db = tmp_path / "env-data.db"

    result = runner.invoke(
        app,
        ["--storage-uri", f"sqlite:///{cli_db}", "data", "put", TENANT, "r", "c", str(source)],
        env={"MESSAGESTORE_DATA_URI": f"sqlite:///{env_db}"},
        catch_exceptions=False,
    )
    assert result.exit_code == 0
    assert not env_db.exists()
