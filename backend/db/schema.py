"""Per-chain schema DDL rendered from the SQLAlchemy models."""

from __future__ import annotations

import logging

from sqlalchemy import MetaData
from sqlalchemy.dialects import postgresql
from sqlalchemy.schema import CreateSchema, CreateTable

from backend.db import models  # noqa: F401  (registers tables on metadata)
from backend.db.base import metadata

logger = logging.getLogger(__name__)

# Tables whose contents are replaced wholesale by a genesis migration, in
# dependency order.
HEIGHT_DEPENDENT_TABLES: tuple[str, ...] = (
    # Registry backend.
    "entities",
    "nodes",
    "runtimes",
    # Staking backend.
    "accounts",
    "allowances",
    "delegations",
    "debonding_delegations",
    # Governance backend.
    "proposals",
    "votes",
)

OPERATIONAL_TABLES: tuple[str, ...] = (
    "processed_blocks",
    "checkpointed_heights",
)


def chain_metadata(schema: str) -> MetaData:
    """Copy every model table into a fresh MetaData bound to ``schema``."""
    chain_md = MetaData()
    for table in metadata.sorted_tables:
        table.to_metadata(chain_md, schema=schema)
    return chain_md


def _compile(element: object) -> str:
    return str(element.compile(dialect=postgresql.dialect())).strip() + ";"  # type: ignore[attr-defined]


def chain_schema_ddl(schema: str) -> tuple[str, ...]:
    """Return idempotent CREATE statements for one chain's schema and tables."""
    chain_md = chain_metadata(schema)
    statements = [_compile(CreateSchema(schema, if_not_exists=True))]
    for table in chain_md.sorted_tables:
        statements.append(_compile(CreateTable(table, if_not_exists=True)))
    return tuple(statements)
