"""Checkpoint tables: point-in-time copies of indexed state for validation."""

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional, Protocol

from backend.db.schema import HEIGHT_DEPENDENT_TABLES
from indexer.errors import CheckpointError
from indexer.sql_literals import chain_schema_name, qualified
from indexer.storage import QueryBatch

logger = logging.getLogger(__name__)

CHECKPOINT_SUFFIX = "_checkpoint"


class CheckpointClient(Protocol):
    """Storage protocol required by the checkpoint subsystem."""

    def send_batch(self, batch: QueryBatch, timeout: Optional[float] = None) -> None:
        """Execute the batch as a single transaction."""

    def query_row(
        self,
        sql: str,
        params: Optional[Mapping[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> Optional[Mapping[str, Any]]:
        """Fetch one row."""


def checkpoint_table(table: str) -> str:
    return f"{table}{CHECKPOINT_SUFFIX}"


def checkpoint_batch(schema: str) -> QueryBatch:
    """Queue shadow-table recreation for every height-dependent table plus the ledger insert."""
    batch = QueryBatch()
    for table in HEIGHT_DEPENDENT_TABLES:
        shadow = qualified(schema, checkpoint_table(table))
        batch.queue(f"DROP TABLE IF EXISTS {shadow} CASCADE;")
        batch.queue(f"CREATE TABLE {shadow} AS TABLE {qualified(schema, table)};")
    batch.queue(
        f"INSERT INTO {qualified(schema, 'checkpointed_heights')} (height) "
        f"SELECT height FROM {qualified(schema, 'processed_blocks')} "
        "ORDER BY height DESC, processed_time DESC LIMIT 1 "
        "ON CONFLICT DO NOTHING;"
    )
    return batch


def latest_checkpoint_height(
    client: CheckpointClient,
    schema: str,
    timeout: Optional[float] = None,
) -> Optional[int]:
    row = client.query_row(
        f"SELECT height FROM {qualified(schema, 'checkpointed_heights')} ORDER BY height DESC LIMIT 1",
        timeout=timeout,
    )
    return None if row is None else int(row["height"])


def latest_processed_height(
    client: CheckpointClient,
    schema: str,
    timeout: Optional[float] = None,
) -> Optional[int]:
    row = client.query_row(
        f"SELECT height FROM {qualified(schema, 'processed_blocks')} "
        "ORDER BY height DESC, processed_time DESC LIMIT 1",
        timeout=timeout,
    )
    return None if row is None else int(row["height"])


def checkpoint(client: CheckpointClient, chain_id: str, timeout: Optional[float] = None) -> int:
    """Snapshot all height-dependent tables and record the checkpoint height.

    All shadow tables and the ledger row are written in one batch, so either
    every table reflects the same instant or nothing changes. A chain with no
    processed blocks fails before anything is sent. Returns the latest
    checkpointed height.
    """
    schema = chain_schema_name(chain_id)
    if latest_processed_height(client, schema, timeout=timeout) is None:
        raise CheckpointError(schema, "No processed blocks have been recorded yet.")
    client.send_batch(checkpoint_batch(schema), timeout=timeout)
    height = latest_checkpoint_height(client, schema, timeout=timeout)
    if height is None:
        raise CheckpointError(schema, "Checkpoint ledger is empty after the snapshot.")
    logger.info("Checkpointed schema %s at height %d.", schema, height)
    return height
