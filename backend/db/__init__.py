"""Database package for chain-state table models and schema DDL."""

from __future__ import annotations

import logging

from backend.db.base import Base
from backend.db import models
from backend.db.schema import chain_metadata, chain_schema_ddl

logger = logging.getLogger(__name__)

__all__ = ["Base", "chain_metadata", "chain_schema_ddl", "models"]
