"""Governance backend models: proposals and votes."""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    ForeignKeyConstraint,
    Numeric,
    PrimaryKeyConstraint,
    Text,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from backend.db.base import Base

logger = logging.getLogger(__name__)


class Proposal(Base):
    """Governance proposal with exactly one populated content variant."""

    __tablename__ = "proposals"
    __table_args__ = (
        PrimaryKeyConstraint("id", name="pk_proposals"),
        CheckConstraint(
            "(handler IS NULL) <> (cancels IS NULL)",
            name="ck_proposals_content_exclusive",
        ),
        CheckConstraint(
            "(handler IS NULL) = (upgrade_epoch IS NULL)",
            name="ck_proposals_upgrade_fields_together",
        ),
    )

    id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    submitter: Mapped[str] = mapped_column(Text, nullable=False)
    state: Mapped[str] = mapped_column(Text, nullable=False)
    executed: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        server_default=text("FALSE"),
    )
    deposit: Mapped[int] = mapped_column(Numeric, nullable=False)
    handler: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    cp_target_version: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    rhp_target_version: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    rcp_target_version: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    upgrade_epoch: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    cancels: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    created_at: Mapped[int] = mapped_column(BigInteger, nullable=False)
    closes_at: Mapped[int] = mapped_column(BigInteger, nullable=False)
    invalid_votes: Mapped[int] = mapped_column(Numeric, nullable=False)


class Vote(Base):
    __tablename__ = "votes"
    __table_args__ = (
        PrimaryKeyConstraint("proposal", "voter", name="pk_votes"),
        ForeignKeyConstraint(["proposal"], ["proposals.id"], name="fk_votes_proposal"),
    )

    proposal: Mapped[int] = mapped_column(BigInteger, nullable=False)
    voter: Mapped[str] = mapped_column(Text, nullable=False)
    vote: Mapped[str] = mapped_column(Text, nullable=False)
