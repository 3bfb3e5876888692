"""Staking backend models: accounts, allowances and delegations."""

from __future__ import annotations

import logging

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    ForeignKeyConstraint,
    Identity,
    Numeric,
    PrimaryKeyConstraint,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column

from backend.db.base import Base

logger = logging.getLogger(__name__)


class Account(Base):
    """Ledger account with general and escrow balances."""

    __tablename__ = "accounts"
    __table_args__ = (
        PrimaryKeyConstraint("address", name="pk_accounts"),
        CheckConstraint("general_balance >= 0", name="ck_accounts_general_balance_nonneg"),
        CheckConstraint("nonce >= 0", name="ck_accounts_nonce_nonneg"),
        CheckConstraint("escrow_balance_active >= 0", name="ck_accounts_escrow_balance_active_nonneg"),
        CheckConstraint("escrow_balance_debonding >= 0", name="ck_accounts_escrow_balance_debonding_nonneg"),
    )

    address: Mapped[str] = mapped_column(Text, nullable=False)
    general_balance: Mapped[int] = mapped_column(Numeric, nullable=False)
    nonce: Mapped[int] = mapped_column(Numeric, nullable=False)
    escrow_balance_active: Mapped[int] = mapped_column(Numeric, nullable=False)
    escrow_total_shares_active: Mapped[int] = mapped_column(Numeric, nullable=False)
    escrow_balance_debonding: Mapped[int] = mapped_column(Numeric, nullable=False)
    escrow_total_shares_debonding: Mapped[int] = mapped_column(Numeric, nullable=False)


class Allowance(Base):
    """Amount a beneficiary may withdraw from an owner's general balance."""

    __tablename__ = "allowances"
    __table_args__ = (
        PrimaryKeyConstraint("owner", "beneficiary", name="pk_allowances"),
        ForeignKeyConstraint(["owner"], ["accounts.address"], name="fk_allowances_owner"),
    )

    owner: Mapped[str] = mapped_column(Text, nullable=False)
    beneficiary: Mapped[str] = mapped_column(Text, nullable=False)
    allowance: Mapped[int] = mapped_column(Numeric, nullable=False)


class Delegation(Base):
    __tablename__ = "delegations"
    __table_args__ = (PrimaryKeyConstraint("delegatee", "delegator", name="pk_delegations"),)

    delegatee: Mapped[str] = mapped_column(Text, nullable=False)
    delegator: Mapped[str] = mapped_column(Text, nullable=False)
    shares: Mapped[int] = mapped_column(Numeric, nullable=False)


class DebondingDelegation(Base):
    """One debonding entry; a delegator may hold several per delegatee."""

    __tablename__ = "debonding_delegations"
    __table_args__ = (PrimaryKeyConstraint("id", name="pk_debonding_delegations"),)

    id: Mapped[int] = mapped_column(
        BigInteger,
        Identity(always=True),
        nullable=False,
    )
    delegatee: Mapped[str] = mapped_column(Text, nullable=False)
    delegator: Mapped[str] = mapped_column(Text, nullable=False)
    shares: Mapped[int] = mapped_column(Numeric, nullable=False)
    debond_end: Mapped[int] = mapped_column(BigInteger, nullable=False)
