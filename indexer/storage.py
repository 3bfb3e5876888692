"""PostgreSQL target storage client backed by a bounded connection pool."""

from __future__ import annotations

from contextlib import contextmanager
import logging
import re
from typing import Any, Callable, Iterator, Mapping, Optional, Sequence

import psycopg
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool, PoolClosed, PoolTimeout

from indexer.errors import StorageConnectionError, TransactionError

logger = logging.getLogger(__name__)

MODULE_NAME = "postgres"
DEFAULT_MAX_CONNS = 32

_NAMED_PARAM_RE = re.compile(r"(?<!:):([a-zA-Z_][a-zA-Z0-9_]*)")


def _convert_named_params(sql: str) -> str:
    """Convert :named params to psycopg %(named)s format."""
    return _NAMED_PARAM_RE.sub(r"%(\1)s", sql)


def _prepare(sql: str, params: Optional[Mapping[str, Any]]) -> tuple[str, Optional[dict[str, Any]]]:
    # Statements without parameters are sent verbatim, so literal text such
    # as '%' or ':' inside generated SQL is never reinterpreted.
    if params is None:
        return sql, None
    return _convert_named_params(sql), dict(params)


def _connection_lost(conn: Any, exc: BaseException) -> bool:
    return bool(getattr(conn, "broken", False) or getattr(conn, "closed", False)) or isinstance(
        exc, psycopg.InterfaceError
    )


class QueryBatch:
    """Ordered statements to be executed together in one transaction."""

    def __init__(self) -> None:
        self._items: list[tuple[str, Optional[Mapping[str, Any]]]] = []

    def queue(self, sql: str, params: Optional[Mapping[str, Any]] = None) -> None:
        self._items.append((sql, params))

    def extend(self, statements: Sequence[str]) -> None:
        for sql in statements:
            self.queue(sql)

    @property
    def statements(self) -> list[str]:
        return [sql for sql, _ in self._items]

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[tuple[str, Optional[Mapping[str, Any]]]]:
        return iter(self._items)


class PostgresClient:
    """Pooled PostgreSQL client for ad hoc reads and transactional batches.

    The client keeps no locks of its own: any number of threads may share it,
    the pool caps backend connections at ``max_conns`` and consistency comes
    from backend transactions. Nothing is retried; callers own retry policy.
    """

    def __init__(
        self,
        conn_string: str,
        max_conns: int = DEFAULT_MAX_CONNS,
        statement_timeout: Optional[float] = None,
        pool_factory: Callable[..., Any] = ConnectionPool,
    ) -> None:
        if max_conns < 1:
            raise ValueError("max_conns must be >= 1.")
        self._statement_timeout = statement_timeout
        self._closed = False
        try:
            self._pool = pool_factory(
                conn_string,
                min_size=1,
                max_size=max_conns,
                open=True,
                kwargs={"autocommit": False},
                name=MODULE_NAME,
            )
        except psycopg.Error as exc:
            logger.error("Failed to open connection pool: %s", exc)
            raise StorageConnectionError(f"Failed to open connection pool: {exc}") from exc

    def name(self) -> str:
        return MODULE_NAME

    @contextmanager
    def _connection(self, timeout: Optional[float]) -> Iterator[Any]:
        if self._closed:
            raise StorageConnectionError("Storage client has been shut down.")
        try:
            with self._pool.connection(timeout=timeout) as conn:
                yield conn
        except (PoolTimeout, PoolClosed) as exc:
            logger.error("Failed to acquire pooled connection: %s", exc)
            raise StorageConnectionError(f"Failed to acquire pooled connection: {exc}") from exc

    def _apply_timeout(self, cur: Any, timeout: Optional[float]) -> None:
        effective = timeout if timeout is not None else self._statement_timeout
        if effective is None:
            return
        cur.execute(
            "SELECT set_config('statement_timeout', %(timeout)s, true)",
            {"timeout": str(max(1, int(effective * 1000)))},
        )

    def query(
        self,
        sql: str,
        params: Optional[Mapping[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> list[dict[str, Any]]:
        """Run a query and return all rows as dictionaries."""
        with self._connection(timeout) as conn:
            try:
                with conn.transaction():
                    with conn.cursor(row_factory=dict_row) as cur:
                        self._apply_timeout(cur, timeout)
                        cur.execute(*_prepare(sql, params))
                        if cur.description is None:
                            return []
                        return [dict(row) for row in cur.fetchall()]
            except psycopg.Error as exc:
                logger.error("Failed to query db: %s", exc)
                if _connection_lost(conn, exc):
                    raise StorageConnectionError(f"Connection lost during query: {exc}") from exc
                raise

    def query_row(
        self,
        sql: str,
        params: Optional[Mapping[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> Optional[dict[str, Any]]:
        """Run a query and return its first row, or None."""
        rows = self.query(sql, params, timeout)
        return rows[0] if rows else None

    def send_batch(self, batch: QueryBatch, timeout: Optional[float] = None) -> None:
        """Execute every statement of ``batch`` in one transaction.

        The first failing statement rolls back the whole batch and raises
        ``TransactionError`` carrying its index. Nothing from a failed batch
        is ever visible to other sessions.
        """
        if len(batch) == 0:
            return
        with self._connection(timeout) as conn:
            index = -1
            try:
                with conn.transaction():
                    with conn.cursor() as cur:
                        self._apply_timeout(cur, timeout)
                        for index, (sql, params) in enumerate(batch):
                            cur.execute(*_prepare(sql, params))
            except psycopg.Error as exc:
                if _connection_lost(conn, exc):
                    logger.error("Connection lost while executing tx batch: %s", exc)
                    raise StorageConnectionError(f"Connection lost while executing tx batch: {exc}") from exc
                if index < 0:
                    logger.error("Failed to prepare tx batch: %s", exc)
                    raise
                logger.error(
                    "Failed to execute tx batch: statement %d of %d failed: %s",
                    index,
                    len(batch),
                    exc,
                )
                raise TransactionError(index, batch.statements[index], exc) from exc
        logger.debug("Committed tx batch of %d statements.", len(batch))

    def shutdown(self) -> None:
        """Close the pool and release every connection; later calls are no-ops."""
        if self._closed:
            return
        self._closed = True
        self._pool.close()
