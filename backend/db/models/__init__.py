"""Model module imports for SQLAlchemy metadata registration."""

from __future__ import annotations

import logging

from backend.db.models.governance import Proposal, Vote
from backend.db.models.operations import CheckpointedHeight, ProcessedBlock
from backend.db.models.registry import Entity, Node, Runtime
from backend.db.models.staking import Account, Allowance, DebondingDelegation, Delegation

logger = logging.getLogger(__name__)

__all__ = [
    "Account",
    "Allowance",
    "CheckpointedHeight",
    "DebondingDelegation",
    "Delegation",
    "Entity",
    "Node",
    "ProcessedBlock",
    "Proposal",
    "Runtime",
    "Vote",
]
