"""SQL literal rendering for generated migrations.

Generated migrations are plain SQL text, so every value that reaches a
script goes through exactly one of the routines below. Each routine accepts a
single value type and either renders it or raises ``DocumentError``.
"""

from __future__ import annotations

import logging
import re
from typing import Callable, Optional, Sequence, TypeVar

from indexer.errors import DocumentError

logger = logging.getLogger(__name__)

T = TypeVar("T")

NULL = "NULL"
POSTGRES_MAX_IDENTIFIER_LENGTH = 63

_CAMEL_BOUNDARY_RE = re.compile(r"(?<=[a-z0-9])(?=[A-Z])|(?<=[A-Z])(?=[A-Z][a-z])")
_NON_ALNUM_RE = re.compile(r"[^A-Za-z0-9]+")
_IDENTIFIER_RE = re.compile(r"^[a-z_][a-z0-9_]*$")
_BECH32_ADDRESS_RE = re.compile(r"^[a-z]{1,83}1[02-9ac-hj-np-z]{6,}$")


def snake_case(value: str) -> str:
    """Convert an arbitrary label into lower snake_case."""
    spaced = _CAMEL_BOUNDARY_RE.sub("_", value.strip())
    return _NON_ALNUM_RE.sub("_", spaced).strip("_").lower()


def chain_schema_name(chain_id: str) -> str:
    """Derive the PostgreSQL schema name that isolates one chain's tables."""
    schema = snake_case(chain_id)
    if schema == "":
        raise DocumentError(f"Chain identifier {chain_id!r} does not yield a schema name.")
    if schema[0].isdigit():
        schema = f"chain_{schema}"
    return identifier(schema)


def identifier(value: str) -> str:
    """Validate a bare (unquoted) SQL identifier."""
    if not _IDENTIFIER_RE.match(value):
        raise DocumentError(f"Invalid SQL identifier: {value!r}")
    if len(value.encode("utf-8")) > POSTGRES_MAX_IDENTIFIER_LENGTH:
        raise DocumentError(
            f"SQL identifier exceeds {POSTGRES_MAX_IDENTIFIER_LENGTH} bytes: {value!r}"
        )
    return value


def qualified(schema: str, table: str) -> str:
    return f"{identifier(schema)}.{identifier(table)}"


def text_literal(value: str) -> str:
    """Render a standard-conforming single-quoted string literal."""
    if not isinstance(value, str):
        raise DocumentError(f"Expected text value, got {type(value).__name__}.")
    if "\x00" in value:
        raise DocumentError("Text values must not contain NUL characters.")
    return "'" + value.replace("'", "''") + "'"


def int_literal(value: int) -> str:
    """Render an exact base-10 integer literal of arbitrary magnitude."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise DocumentError(f"Expected integer value, got {type(value).__name__}.")
    return str(value)


def bool_literal(value: bool) -> str:
    if not isinstance(value, bool):
        raise DocumentError(f"Expected boolean value, got {type(value).__name__}.")
    return "true" if value else "false"


def address_literal(value: str) -> str:
    """Render a bech32 account address."""
    if not isinstance(value, str) or not _BECH32_ADDRESS_RE.match(value):
        raise DocumentError(f"Invalid account address: {value!r}")
    return f"'{value}'"


def optional_literal(value: Optional[T], render: Callable[[T], str]) -> str:
    return NULL if value is None else render(value)


def row_literal(values: Sequence[str]) -> str:
    """Join already-rendered literals into one VALUES tuple."""
    return "(" + ", ".join(values) + ")"
