"""SQLAlchemy declarative base for the per-chain indexer schema.

Models are declared without a schema; ``backend.db.schema`` copies them into
the schema that isolates one chain.
"""

from __future__ import annotations

import logging

from sqlalchemy import MetaData
from sqlalchemy.orm import DeclarativeBase

logger = logging.getLogger(__name__)

metadata = MetaData()


class Base(DeclarativeBase):
    """Base class for all chain-state table models."""

    metadata = metadata
