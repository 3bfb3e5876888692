"""Apply generated migrations and bootstrap chain schemas through the storage client."""

from __future__ import annotations

import logging
from pathlib import Path
import re
from typing import Optional, Protocol

import sqlparse

from backend.db.schema import chain_schema_ddl
from indexer.sql_literals import chain_schema_name, int_literal, qualified
from indexer.storage import QueryBatch

logger = logging.getLogger(__name__)

_TRANSACTION_CONTROL = frozenset({"BEGIN", "COMMIT"})
_LEADING_COMMENTS_RE = re.compile(r"^(?:\s*--[^\n]*(?:\n|$))*\s*")


class BatchClient(Protocol):
    """Minimal storage protocol needed to apply migrations."""

    def send_batch(self, batch: QueryBatch, timeout: Optional[float] = None) -> None:
        """Execute the batch as a single transaction."""


def _ends_inside_literal(line: str, in_literal: bool) -> bool:
    index = 0
    while index < len(line):
        char = line[index]
        if in_literal:
            if char == "'":
                in_literal = False
        elif char == "'":
            in_literal = True
        elif line.startswith("--", index):
            break
        index += 1
    return in_literal


def _remove_psql_meta_commands(text: str) -> str:
    # Only lines that start outside a quoted literal can be meta-commands;
    # a doubled '' closes and reopens the literal, which leaves the state intact.
    lines: list[str] = []
    in_literal = False
    for line in text.splitlines():
        if not in_literal and line.lstrip().startswith("\\"):
            continue
        lines.append(line)
        in_literal = _ends_inside_literal(line, in_literal)
    return "\n".join(lines)


def split_sql_statements(text: str) -> list[str]:
    cleaned = _remove_psql_meta_commands(text)
    return [statement.strip() for statement in sqlparse.split(cleaned) if statement.strip()]


def _is_transaction_control(statement: str) -> bool:
    bare = _LEADING_COMMENTS_RE.sub("", statement).strip().rstrip(";").strip().upper()
    return bare in _TRANSACTION_CONTROL


def migration_batch(script: str) -> QueryBatch:
    """Turn a BEGIN … COMMIT migration script into one batch.

    The explicit BEGIN/COMMIT pair is dropped because the batch itself runs as
    a single transaction.
    """
    batch = QueryBatch()
    for statement in split_sql_statements(script):
        if _is_transaction_control(statement):
            continue
        batch.queue(statement)
    return batch


def processed_height_statement(schema: str, height: int) -> str:
    return (
        f"INSERT INTO {qualified(schema, 'processed_blocks')} (height) "
        f"VALUES ({int_literal(height)}) ON CONFLICT DO NOTHING;"
    )


def apply_migration(
    client: BatchClient,
    script: str,
    timeout: Optional[float] = None,
    processed_height: Optional[tuple[str, int]] = None,
) -> int:
    """Apply a migration script all-or-nothing; returns the number of statements run.

    ``processed_height`` is a (chain_id, height) pair recorded in
    ``processed_blocks`` inside the same transaction.
    """
    batch = migration_batch(script)
    if processed_height is not None:
        chain_id, height = processed_height
        batch.queue(processed_height_statement(chain_schema_name(chain_id), height))
    client.send_batch(batch, timeout=timeout)
    logger.info("Applied migration with %d statements.", len(batch))
    return len(batch)


def apply_migration_file(
    client: BatchClient,
    path: Path,
    timeout: Optional[float] = None,
    processed_height: Optional[tuple[str, int]] = None,
) -> int:
    script = Path(path).read_text(encoding="utf-8")
    return apply_migration(client, script, timeout=timeout, processed_height=processed_height)


def bootstrap_chain_schema(client: BatchClient, chain_id: str, timeout: Optional[float] = None) -> str:
    """Create the chain's schema and tables if missing; returns the schema name."""
    schema = chain_schema_name(chain_id)
    batch = QueryBatch()
    batch.extend(chain_schema_ddl(schema))
    client.send_batch(batch, timeout=timeout)
    logger.info("Bootstrapped schema %s for chain %s.", schema, chain_id)
    return schema
