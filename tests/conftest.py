"""Pytest fixtures shared across unit and integration tests."""

from __future__ import annotations

import os
from typing import Any, Iterator
import uuid

import psycopg
from psycopg.conninfo import make_conninfo
import pytest

from indexer.storage import PostgresClient


def _dsn_from_env() -> str:
    host = os.getenv("TEST_DB_HOST")
    port = os.getenv("TEST_DB_PORT")
    dbname = os.getenv("TEST_DB_NAME")
    user = os.getenv("TEST_DB_USER")
    password = os.getenv("TEST_DB_PASSWORD")

    if not all([host, port, dbname, user, password]):
        pytest.skip("Integration DB env vars are missing; set TEST_DB_HOST/PORT/NAME/USER/PASSWORD")
    return make_conninfo(
        host=host,
        port=port,
        dbname=dbname,
        user=user,
        password=password,
    )


@pytest.fixture(scope="session")
def pg_dsn() -> str:
    return _dsn_from_env()


@pytest.fixture(scope="session")
def pg_conn(pg_dsn: str) -> Any:
    """Session-scoped autocommit connection for out-of-band assertions."""
    conn = psycopg.connect(pg_dsn, autocommit=True)
    try:
        yield conn
    finally:
        conn.close()


@pytest.fixture
def storage_client(pg_dsn: str) -> Iterator[PostgresClient]:
    client = PostgresClient(pg_dsn, max_conns=4)
    try:
        yield client
    finally:
        client.shutdown()


@pytest.fixture
def chain_id(pg_conn: Any) -> Iterator[str]:
    """Unique chain ID whose schema is dropped after the test."""
    value = f"it-chain-{uuid.uuid4().hex[:12]}"
    yield value
    schema = value.replace("-", "_")
    with pg_conn.cursor() as cur:
        cur.execute(f"DROP SCHEMA IF EXISTS {schema} CASCADE")
