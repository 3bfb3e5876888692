"""Environment-backed configuration for the indexer CLI and services."""

from __future__ import annotations

from dataclasses import dataclass
import logging
import os
from typing import Optional

from indexer.migration_generator import DEFAULT_MAX_ROWS_PER_INSERT
from indexer.storage import DEFAULT_MAX_CONNS

logger = logging.getLogger(__name__)

_LOG_LEVELS = frozenset({"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"})


@dataclass(frozen=True)
class IndexerConfig:
    """Canonical configuration surface for migration, storage and checkpoint commands."""

    storage_endpoint: Optional[str]
    storage_max_conns: int
    statement_timeout_seconds: Optional[float]
    migration_max_rows_per_insert: int
    chain_context: Optional[str]
    log_level: str

    def require_storage_endpoint(self) -> str:
        if not self.storage_endpoint:
            raise RuntimeError("Missing required environment variable: INDEXER_STORAGE_ENDPOINT")
        return self.storage_endpoint


def _read_env(name: str, default: str | None = None) -> str:
    value = os.getenv(name, default)
    if value is None or value.strip() == "":
        raise RuntimeError(f"Missing required environment variable: {name}")
    return value.strip()


def _read_optional(name: str) -> Optional[str]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return None
    return raw.strip()


def _read_int(name: str, default: int, minimum: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = int(raw.strip())
    except ValueError as exc:
        raise RuntimeError(f"Invalid integer value for {name}: {raw}") from exc
    if value < minimum:
        raise RuntimeError(f"{name} must be >= {minimum}, got {value}")
    return value


def _read_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = float(raw.strip())
    except ValueError as exc:
        raise RuntimeError(f"Invalid float value for {name}: {raw}") from exc
    if value < 0:
        raise RuntimeError(f"{name} must not be negative, got {value}")
    return value


def load_indexer_config() -> IndexerConfig:
    """Load and validate indexer configuration from environment."""
    log_level = _read_env("INDEXER_LOG_LEVEL", "INFO").upper()
    if log_level not in _LOG_LEVELS:
        raise RuntimeError(f"Invalid log level for INDEXER_LOG_LEVEL: {log_level}")

    timeout = _read_float("INDEXER_STATEMENT_TIMEOUT_SECONDS", 0.0)

    return IndexerConfig(
        storage_endpoint=_read_optional("INDEXER_STORAGE_ENDPOINT"),
        storage_max_conns=_read_int("INDEXER_STORAGE_MAX_CONNS", DEFAULT_MAX_CONNS, minimum=1),
        statement_timeout_seconds=timeout if timeout > 0 else None,
        migration_max_rows_per_insert=_read_int(
            "INDEXER_MIGRATION_MAX_ROWS_PER_INSERT",
            DEFAULT_MAX_ROWS_PER_INSERT,
            minimum=1,
        ),
        chain_context=_read_optional("INDEXER_CHAIN_CONTEXT"),
        log_level=log_level,
    )
