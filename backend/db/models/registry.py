"""Registry backend models: entities, nodes and runtimes."""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    ForeignKeyConstraint,
    PrimaryKeyConstraint,
    Text,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from backend.db.base import Base

logger = logging.getLogger(__name__)


class Entity(Base):
    """Registered entity descriptor."""

    __tablename__ = "entities"
    __table_args__ = (PrimaryKeyConstraint("id", name="pk_entities"),)

    id: Mapped[str] = mapped_column(Text, nullable=False)


class Node(Base):
    """Registered node descriptor, owned by an entity."""

    __tablename__ = "nodes"
    __table_args__ = (
        PrimaryKeyConstraint("id", name="pk_nodes"),
        ForeignKeyConstraint(["entity_id"], ["entities.id"], name="fk_nodes_entity_id"),
        CheckConstraint("expiration >= 0", name="ck_nodes_expiration_nonneg"),
    )

    id: Mapped[str] = mapped_column(Text, nullable=False)
    entity_id: Mapped[str] = mapped_column(Text, nullable=False)
    expiration: Mapped[int] = mapped_column(BigInteger, nullable=False)
    tls_pubkey: Mapped[str] = mapped_column(Text, nullable=False)
    tls_next_pubkey: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    p2p_pubkey: Mapped[str] = mapped_column(Text, nullable=False)
    consensus_pubkey: Mapped[str] = mapped_column(Text, nullable=False)
    vrf_pubkey: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    roles: Mapped[str] = mapped_column(Text, nullable=False)
    software_version: Mapped[Optional[str]] = mapped_column(Text, nullable=True)


class Runtime(Base):
    """Active and suspended runtimes, discriminated by ``suspended``."""

    __tablename__ = "runtimes"
    __table_args__ = (PrimaryKeyConstraint("id", name="pk_runtimes"),)

    id: Mapped[str] = mapped_column(Text, nullable=False)
    suspended: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        server_default=text("FALSE"),
    )
    kind: Mapped[str] = mapped_column(Text, nullable=False)
    tee_hardware: Mapped[str] = mapped_column(Text, nullable=False)
    key_manager: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        server_default=text("'none'"),
    )
