"""Unit tests for migration application and schema bootstrap."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import pytest

from backend.db.schema import HEIGHT_DEPENDENT_TABLES, OPERATIONAL_TABLES, chain_schema_ddl
from indexer.errors import TransactionError
from indexer.migration_generator import MigrationGenerator
from indexer.migrations import (
    apply_migration,
    apply_migration_file,
    bootstrap_chain_schema,
    migration_batch,
    split_sql_statements,
)
from indexer.genesis import parse_genesis_document
from indexer.storage import QueryBatch
from tests.utils.genesis_fixtures import genesis_payload


class _RecordingClient:
    def __init__(self, fail_at: Optional[int] = None) -> None:
        self.batches: list[list[str]] = []
        self.timeouts: list[Optional[float]] = []
        self.fail_at = fail_at

    def send_batch(self, batch: QueryBatch, timeout: Optional[float] = None) -> None:
        if self.fail_at is not None:
            raise TransactionError(self.fail_at, batch.statements[self.fail_at], RuntimeError("boom"))
        self.batches.append(batch.statements)
        self.timeouts.append(timeout)


def _script() -> str:
    return MigrationGenerator().generate(parse_genesis_document(genesis_payload()))


def test_split_sql_statements_ignores_psql_meta_commands() -> None:
    text = "\\set ON_ERROR_STOP on\nSELECT 1;\n-- note\nSELECT 'a;b';\n"
    statements = split_sql_statements(text)
    assert len(statements) == 2
    assert statements[0].startswith("SELECT 1;")
    assert statements[1].endswith("SELECT 'a;b';")
    assert not any("ON_ERROR_STOP" in s for s in statements)


def test_migration_batch_keeps_multiline_literals_intact() -> None:
    payload = genesis_payload()
    payload["governance"]["proposals"][1]["content"]["upgrade"]["handler"] = "line1\n\\line2"
    script = MigrationGenerator().generate(parse_genesis_document(payload))
    statements = migration_batch(script).statements

    (proposals,) = [s for s in statements if "INSERT INTO test_chain.proposals " in s]
    assert "'line1\n\\line2'" in proposals
    assert proposals.endswith("22, 0);")
    assert any("TRUNCATE test_chain.votes " in s for s in statements)
    assert not any("TRUNCATE test_chain.votes " in s for s in statements if "INSERT INTO" in s)


def test_split_sql_statements_drops_meta_commands_only_outside_literals() -> None:
    text = "\\set x 1\nSELECT 'a\n\\b' AS v; -- it's\n\\echo done\nSELECT 2;\n"
    statements = split_sql_statements(text)
    assert len(statements) == 2
    assert "SELECT 'a\n\\b' AS v;" in statements[0]
    assert statements[1].endswith("SELECT 2;")
    assert not any("echo" in s for s in statements)


def test_migration_batch_drops_transaction_control() -> None:
    statements = migration_batch(_script()).statements

    assert not any(s.strip().rstrip(";").upper() == "BEGIN" for s in statements)
    assert not any(s.rstrip(";").endswith("COMMIT") for s in statements)
    truncates = [s for s in statements if "TRUNCATE" in s]
    assert len(truncates) == len(HEIGHT_DEPENDENT_TABLES)
    assert sum(1 for s in statements if "INSERT INTO" in s) == len(HEIGHT_DEPENDENT_TABLES)


def test_apply_migration_sends_one_batch() -> None:
    client = _RecordingClient()
    count = apply_migration(client, _script(), timeout=30.0)

    assert len(client.batches) == 1
    assert count == len(client.batches[0])
    assert client.timeouts == [30.0]


def test_apply_migration_records_processed_height_in_same_batch() -> None:
    client = _RecordingClient()
    apply_migration(client, _script(), processed_height=("test-chain", 100))

    (statements,) = client.batches
    assert statements[-1] == (
        "INSERT INTO test_chain.processed_blocks (height) VALUES (100) ON CONFLICT DO NOTHING;"
    )


def test_apply_migration_propagates_transaction_error() -> None:
    with pytest.raises(TransactionError) as exc:
        apply_migration(_RecordingClient(fail_at=1), _script())
    assert exc.value.index == 1


def test_apply_migration_file(tmp_path: Path) -> None:
    path = tmp_path / "genesis.sql"
    path.write_text(_script(), encoding="utf-8")
    client = _RecordingClient()

    assert apply_migration_file(client, path) == len(client.batches[0])


def test_chain_schema_ddl_creates_every_table() -> None:
    ddl = chain_schema_ddl("test_chain")

    assert ddl[0] == "CREATE SCHEMA IF NOT EXISTS test_chain;"
    joined = "\n".join(ddl)
    for table in (*HEIGHT_DEPENDENT_TABLES, *OPERATIONAL_TABLES):
        assert f"CREATE TABLE IF NOT EXISTS test_chain.{table} (" in joined
    assert all(statement.endswith(";") for statement in ddl)
    assert "REFERENCES test_chain.entities (id)" in joined
    assert "NUMERIC" in joined
    assert joined.index("test_chain.entities (") < joined.index("test_chain.nodes (")


def test_bootstrap_chain_schema() -> None:
    client = _RecordingClient()
    assert bootstrap_chain_schema(client, "Test-Chain") == "test_chain"
    assert client.batches[0] == list(chain_schema_ddl("test_chain"))
