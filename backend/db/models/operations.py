"""Operational bookkeeping tables for block processing and checkpoints."""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import BigInteger, CheckConstraint, DateTime, PrimaryKeyConstraint, text
from sqlalchemy.orm import Mapped, mapped_column

from backend.db.base import Base

logger = logging.getLogger(__name__)


class ProcessedBlock(Base):
    """Heights the indexer has fully processed."""

    __tablename__ = "processed_blocks"
    __table_args__ = (
        PrimaryKeyConstraint("height", name="pk_processed_blocks"),
        CheckConstraint("height >= 0", name="ck_processed_blocks_height_nonneg"),
    )

    height: Mapped[int] = mapped_column(BigInteger, nullable=False)
    processed_time: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("now()"),
    )


class CheckpointedHeight(Base):
    """Ledger of heights at which checkpoint tables were captured."""

    __tablename__ = "checkpointed_heights"
    __table_args__ = (PrimaryKeyConstraint("height", name="pk_checkpointed_heights"),)

    height: Mapped[int] = mapped_column(BigInteger, nullable=False)
    checkpoint_time: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("now()"),
    )
