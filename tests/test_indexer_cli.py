"""Unit tests for scripts/indexer_cli.py."""

from __future__ import annotations

import importlib.util
import json
from pathlib import Path
import runpy
import sys
from typing import Any, Optional

import pytest

from indexer.storage import QueryBatch
from tests.utils.genesis_fixtures import entity_envelope, genesis_payload, make_key, tamper


ROOT = Path(__file__).resolve().parents[1]
SCRIPT_PATH = ROOT / "scripts" / "indexer_cli.py"


def _load_cli_module(module_name: str) -> Any:
    spec = importlib.util.spec_from_file_location(module_name, SCRIPT_PATH)
    assert spec is not None and spec.loader is not None
    module = importlib.util.module_from_spec(spec)
    sys.modules[module_name] = module
    spec.loader.exec_module(module)
    return module


class _FakeClient:
    instances: list["_FakeClient"] = []

    def __init__(self, conn_string: str, max_conns: int = 32, statement_timeout: Optional[float] = None) -> None:
        self.conn_string = conn_string
        self.max_conns = max_conns
        self.statement_timeout = statement_timeout
        self.batches: list[list[str]] = []
        self.height: Optional[int] = 100
        self.closed = False
        _FakeClient.instances.append(self)

    def send_batch(self, batch: QueryBatch, timeout: Optional[float] = None) -> None:
        self.batches.append(batch.statements)

    def query_row(self, sql: str, params: Any = None, timeout: Optional[float] = None) -> Optional[dict[str, Any]]:
        return None if self.height is None else {"height": self.height}

    def query(self, sql: str, params: Any = None, timeout: Optional[float] = None) -> list[dict[str, Any]]:
        return []

    def shutdown(self) -> None:
        self.closed = True


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "INDEXER_STORAGE_ENDPOINT",
        "INDEXER_STORAGE_MAX_CONNS",
        "INDEXER_STATEMENT_TIMEOUT_SECONDS",
        "INDEXER_MIGRATION_MAX_ROWS_PER_INSERT",
        "INDEXER_CHAIN_CONTEXT",
        "INDEXER_LOG_LEVEL",
    ):
        monkeypatch.delenv(name, raising=False)
    _FakeClient.instances = []


def _genesis_file(tmp_path: Path, payload: Optional[dict[str, Any]] = None) -> Path:
    path = tmp_path / "genesis.json"
    path.write_text(json.dumps(payload or genesis_payload()), encoding="utf-8")
    return path


def test_import_path_branch_adds_root_when_missing(monkeypatch: pytest.MonkeyPatch) -> None:
    root = str(ROOT)
    monkeypatch.setattr(sys, "path", [entry for entry in sys.path if entry != root])
    runpy.run_path(str(SCRIPT_PATH), run_name="indexer_cli_import_missing_root")
    assert root in sys.path


def test_help_exits_cleanly(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(sys, "argv", [str(SCRIPT_PATH), "--help"])
    with pytest.raises(SystemExit) as exc:
        runpy.run_path(str(SCRIPT_PATH), run_name="__main__")
    assert exc.value.code == 0


def test_generate_writes_migration(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    cli = _load_cli_module("indexer_cli_generate")
    output = tmp_path / "0001_genesis.sql"

    code = cli.main(["generate", "--genesis", str(_genesis_file(tmp_path)), "--output", str(output)])

    assert code == 0
    payload = json.loads(capsys.readouterr().out)
    assert payload["chain_id"] == "test-chain"
    assert payload["bytes"] == len(output.read_bytes())
    assert output.read_text(encoding="utf-8").startswith("-- DO NOT MODIFY")


def test_generate_respects_max_rows_setting(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    cli = _load_cli_module("indexer_cli_generate_chunks")
    monkeypatch.setenv("INDEXER_MIGRATION_MAX_ROWS_PER_INSERT", "1")
    output = tmp_path / "0001_genesis.sql"

    assert cli.main(["generate", "--genesis", str(_genesis_file(tmp_path)), "--output", str(output)]) == 0
    assert output.read_text(encoding="utf-8").count("INSERT INTO test_chain.runtimes ") == 2


def test_generate_failure_returns_error_and_writes_nothing(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    cli = _load_cli_module("indexer_cli_generate_fail")
    payload = genesis_payload()
    payload["registry"]["entities"] = [tamper(entity_envelope(make_key("tampered")))]
    output = tmp_path / "0001_genesis.sql"

    code = cli.main(["generate", "--genesis", str(_genesis_file(tmp_path, payload)), "--output", str(output)])

    assert code == 1
    assert json.loads(capsys.readouterr().out)["error"] == "SignatureMismatchError"
    assert not output.exists()


def test_storage_command_without_endpoint_returns_error(capsys: pytest.CaptureFixture[str]) -> None:
    cli = _load_cli_module("indexer_cli_no_dsn")

    assert cli.main(["checkpoint", "--chain-id", "test-chain"]) == 1
    payload = json.loads(capsys.readouterr().out)
    assert payload["error"] == "RuntimeError"
    assert "INDEXER_STORAGE_ENDPOINT" in payload["detail"]


def test_invalid_config_returns_error(monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]) -> None:
    cli = _load_cli_module("indexer_cli_bad_config")
    monkeypatch.setenv("INDEXER_STORAGE_MAX_CONNS", "zero")

    assert cli.main(["--dsn", "postgresql://x", "checkpoint", "--chain-id", "test-chain"]) == 1
    assert "INDEXER_STORAGE_MAX_CONNS" in json.loads(capsys.readouterr().out)["detail"]


def test_init_schema_and_apply(tmp_path: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]) -> None:
    cli = _load_cli_module("indexer_cli_apply")
    monkeypatch.setattr(cli, "PostgresClient", _FakeClient)
    monkeypatch.setenv("INDEXER_STORAGE_ENDPOINT", "postgresql://env/indexer")
    genesis = _genesis_file(tmp_path)
    migration = tmp_path / "0001_genesis.sql"
    assert cli.main(["generate", "--genesis", str(genesis), "--output", str(migration)]) == 0
    capsys.readouterr()

    assert cli.main(["--dsn", "postgresql://flag/indexer", "init-schema", "--genesis", str(genesis)]) == 0
    assert json.loads(capsys.readouterr().out) == {"chain_id": "test-chain", "schema": "test_chain"}
    assert _FakeClient.instances[-1].conn_string == "postgresql://flag/indexer"
    assert _FakeClient.instances[-1].closed

    code = cli.main(
        ["apply", "--migration", str(migration), "--chain-id", "test-chain", "--height", "100"]
    )
    assert code == 0
    client = _FakeClient.instances[-1]
    assert client.conn_string == "postgresql://env/indexer"
    assert client.batches[0][-1].startswith("INSERT INTO test_chain.processed_blocks")
    assert json.loads(capsys.readouterr().out)["statements"] == len(client.batches[0])


def test_apply_height_and_chain_id_go_together(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    cli = _load_cli_module("indexer_cli_apply_height")
    monkeypatch.setattr(cli, "PostgresClient", _FakeClient)
    migration = str(tmp_path / "m.sql")
    with pytest.raises(SystemExit, match="must be given together"):
        cli.main(["--dsn", "postgresql://x", "apply", "--migration", migration, "--height", "5"])
    with pytest.raises(SystemExit, match="must be given together"):
        cli.main(["--dsn", "postgresql://x", "apply", "--migration", migration, "--chain-id", "test-chain"])
    assert _FakeClient.instances == []


def test_checkpoint_command(monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]) -> None:
    cli = _load_cli_module("indexer_cli_checkpoint")
    monkeypatch.setattr(cli, "PostgresClient", _FakeClient)

    assert cli.main(["--dsn", "postgresql://x", "checkpoint", "--chain-id", "test-chain"]) == 0
    assert json.loads(capsys.readouterr().out) == {"chain_id": "test-chain", "height": 100}


def test_checkpoint_without_height_returns_error(
    monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    cli = _load_cli_module("indexer_cli_checkpoint_empty")

    class _EmptyClient(_FakeClient):
        def __init__(self, *args: Any, **kwargs: Any) -> None:
            super().__init__(*args, **kwargs)
            self.height = None

    monkeypatch.setattr(cli, "PostgresClient", _EmptyClient)

    assert cli.main(["--dsn", "postgresql://x", "checkpoint", "--chain-id", "test-chain"]) == 1
    assert json.loads(capsys.readouterr().out)["error"] == "CheckpointError"
    assert _FakeClient.instances[-1].closed


def test_validate_reports_mismatches_with_exit_code_two(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    cli = _load_cli_module("indexer_cli_validate")
    monkeypatch.setattr(cli, "PostgresClient", _FakeClient)

    code = cli.main(["--dsn", "postgresql://x", "validate", "--genesis", str(_genesis_file(tmp_path))])

    assert code == 2
    payload = json.loads(capsys.readouterr().out)
    assert payload["ok"] is False
    assert payload["height"] == 100
    assert {m["table"] for m in payload["mismatches"]} >= {"entities", "accounts", "proposals"}
