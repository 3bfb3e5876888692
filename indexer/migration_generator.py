"""Genesis document to SQL migration generator.

The generated migration re-initializes every height-dependent table of one
chain schema from a genesis document. It is a single ``BEGIN … COMMIT``
script: each table is truncated and then repopulated with multi-row
``INSERT`` statements. Backends are emitted in a fixed order (registry,
staking, governance) and rows are sorted by key, so the same document always
yields the same script.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
from pathlib import Path
from typing import Iterable, Optional, Sequence

from indexer.envelope import open_entity, open_node
from indexer.errors import DocumentError, MigrationWriteError
from indexer.genesis import Entity, GenesisDocument, Node, Proposal, Runtime
from indexer.sql_literals import (
    NULL,
    address_literal,
    bool_literal,
    chain_schema_name,
    int_literal,
    optional_literal,
    qualified,
    row_literal,
    text_literal,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_ROWS_PER_INSERT = 1000
KEY_MANAGER_NONE = "none"

MIGRATION_HEADER = (
    "-- DO NOT MODIFY\n"
    "-- This file was autogenerated by the consensus-indexer migration generator.\n"
)


@dataclass(frozen=True)
class TableBlock:
    """Rendered rows destined for one table."""

    table: str
    columns: tuple[str, ...]
    rows: tuple[str, ...]


@dataclass(frozen=True)
class BackendSection:
    title: str
    blocks: tuple[TableBlock, ...]


def open_entities(document: GenesisDocument, chain_context: Optional[str] = None) -> list[Entity]:
    """Verify and decode every signed entity, sorted by ID."""
    entities: dict[str, Entity] = {}
    for i, envelope in enumerate(document.registry.entities):
        if envelope is None:
            continue
        entity = open_entity(envelope, chain_context)
        if entity.id in entities:
            raise DocumentError(f"registry.entities[{i}]: duplicate entity {entity.id}.")
        entities[entity.id] = entity
    return [entities[key] for key in sorted(entities)]


def open_nodes(document: GenesisDocument, chain_context: Optional[str] = None) -> list[Node]:
    """Verify and decode every signed node, sorted by ID."""
    nodes: dict[str, Node] = {}
    for i, envelope in enumerate(document.registry.nodes):
        if envelope is None:
            continue
        node = open_node(envelope, chain_context)
        if node.id in nodes:
            raise DocumentError(f"registry.nodes[{i}]: duplicate node {node.id}.")
        nodes[node.id] = node
    return [nodes[key] for key in sorted(nodes)]


def merged_runtimes(document: GenesisDocument) -> list[tuple[Runtime, bool]]:
    """Union active and suspended runtimes as (runtime, suspended) pairs sorted by ID."""
    runtimes: dict[str, tuple[Runtime, bool]] = {}
    for suspended, source in (
        (False, document.registry.runtimes),
        (True, document.registry.suspended_runtimes),
    ):
        for runtime in source:
            if runtime.id in runtimes:
                raise DocumentError(
                    f"Runtime {runtime.id} is listed more than once across active and suspended runtimes."
                )
            runtimes[runtime.id] = (runtime, suspended)
    return [runtimes[key] for key in sorted(runtimes)]


def entity_row(entity: Entity) -> str:
    return row_literal((text_literal(entity.id),))


def node_row(node: Node) -> str:
    return row_literal(
        (
            text_literal(node.id),
            text_literal(node.entity_id),
            int_literal(node.expiration),
            text_literal(node.tls_pubkey),
            text_literal(node.tls_next_pubkey),
            text_literal(node.p2p_pubkey),
            text_literal(node.consensus_pubkey),
            optional_literal(node.vrf_pubkey, text_literal),
            text_literal(node.roles),
            optional_literal(node.software_version, text_literal),
        )
    )


def runtime_row(runtime: Runtime, suspended: bool) -> str:
    return row_literal(
        (
            text_literal(runtime.id),
            bool_literal(suspended),
            text_literal(runtime.kind),
            text_literal(runtime.tee_hardware),
            text_literal(runtime.key_manager if runtime.key_manager is not None else KEY_MANAGER_NONE),
        )
    )


def proposal_row(proposal: Proposal) -> str:
    """Render a proposal, populating only the columns of its content variant."""
    upgrade = proposal.content.upgrade
    cancel_upgrade = proposal.content.cancel_upgrade
    if upgrade is not None and cancel_upgrade is None:
        variant = (
            text_literal(upgrade.handler),
            text_literal(str(upgrade.consensus_protocol)),
            text_literal(str(upgrade.runtime_host_protocol)),
            text_literal(str(upgrade.runtime_committee_protocol)),
            int_literal(upgrade.epoch),
            NULL,
        )
    elif cancel_upgrade is not None and upgrade is None:
        variant = (NULL, NULL, NULL, NULL, NULL, int_literal(cancel_upgrade.proposal_id))
    else:
        raise DocumentError(
            f"Proposal {proposal.id} must carry exactly one of upgrade or cancel_upgrade content."
        )
    return row_literal(
        (
            int_literal(proposal.id),
            address_literal(proposal.submitter),
            text_literal(proposal.state),
            int_literal(proposal.deposit),
            *variant,
            int_literal(proposal.created_at),
            int_literal(proposal.closes_at),
            int_literal(proposal.invalid_votes),
        )
    )


def _chunks(rows: Sequence[str], size: int) -> Iterable[Sequence[str]]:
    for start in range(0, len(rows), size):
        yield rows[start : start + size]


class MigrationGenerator:
    """Generates genesis-state migrations for the indexer's target storage."""

    def __init__(
        self,
        max_rows_per_insert: int = DEFAULT_MAX_ROWS_PER_INSERT,
        chain_context: Optional[str] = None,
    ) -> None:
        if max_rows_per_insert < 1:
            raise ValueError("max_rows_per_insert must be >= 1.")
        self._max_rows_per_insert = max_rows_per_insert
        self._chain_context = chain_context

    def write(self, path: Path, document: GenesisDocument) -> str:
        """Generate the migration and write it to ``path``; returns the script."""
        script = self.generate(document)
        destination = Path(path)
        try:
            destination.write_text(script, encoding="utf-8")
        except OSError as exc:
            logger.error("Failed to write migration for chain %s to %s.", document.chain_id, destination)
            raise MigrationWriteError(destination, script, exc) from exc
        logger.info("Wrote migration for chain %s to %s.", document.chain_id, destination)
        return script

    def generate(self, document: GenesisDocument) -> str:
        """Build the migration that re-initializes all height-dependent state."""
        schema = chain_schema_name(document.chain_id)
        sections = []
        for build in (self._registry_section, self._staking_section, self._governance_section):
            try:
                sections.append(build(document))
            except DocumentError:
                logger.error(
                    "Migration generation failed for chain %s in %s.",
                    document.chain_id,
                    build.__name__.strip("_").replace("_section", ""),
                )
                raise

        parts = [MIGRATION_HEADER, "\nBEGIN;\n"]
        for section in sections:
            parts.append(f"\n-- {section.title} Backend Data\n")
            for block in section.blocks:
                parts.append(self._render_block(schema, block))
                logger.debug("Table %s.%s: %d rows.", schema, block.table, len(block.rows))
        parts.append("\nCOMMIT;\n")

        logger.info(
            "Generated migration for chain %s (schema=%s, rows=%d).",
            document.chain_id,
            schema,
            sum(len(block.rows) for section in sections for block in section.blocks),
        )
        return "".join(parts)

    def _render_block(self, schema: str, block: TableBlock) -> str:
        table = qualified(schema, block.table)
        out = [f"TRUNCATE {table} RESTART IDENTITY CASCADE;\n"]
        # An INSERT with an empty VALUES list is invalid SQL; truncate only.
        for chunk in _chunks(block.rows, self._max_rows_per_insert):
            out.append(f"INSERT INTO {table} ({', '.join(block.columns)})\nVALUES\n")
            out.append(",\n".join(f"    {row}" for row in chunk))
            out.append(";\n")
        return "".join(out)

    def _registry_section(self, document: GenesisDocument) -> BackendSection:
        entities = open_entities(document, self._chain_context)
        nodes = open_nodes(document, self._chain_context)
        runtimes = merged_runtimes(document)
        return BackendSection(
            title="Registry",
            blocks=(
                TableBlock("entities", ("id",), tuple(entity_row(e) for e in entities)),
                TableBlock(
                    "nodes",
                    (
                        "id",
                        "entity_id",
                        "expiration",
                        "tls_pubkey",
                        "tls_next_pubkey",
                        "p2p_pubkey",
                        "consensus_pubkey",
                        "vrf_pubkey",
                        "roles",
                        "software_version",
                    ),
                    tuple(node_row(n) for n in nodes),
                ),
                TableBlock(
                    "runtimes",
                    ("id", "suspended", "kind", "tee_hardware", "key_manager"),
                    tuple(runtime_row(r, suspended) for r, suspended in runtimes),
                ),
            ),
        )

    def _staking_section(self, document: GenesisDocument) -> BackendSection:
        staking = document.staking
        accounts = []
        allowances = []
        for address in sorted(staking.ledger):
            account = staking.ledger[address]
            accounts.append(
                row_literal(
                    (
                        address_literal(address),
                        int_literal(account.general_balance),
                        int_literal(account.nonce),
                        int_literal(account.escrow_active_balance),
                        int_literal(account.escrow_active_shares),
                        int_literal(account.escrow_debonding_balance),
                        int_literal(account.escrow_debonding_shares),
                    )
                )
            )
            for beneficiary in sorted(account.allowances):
                allowances.append(
                    row_literal(
                        (
                            address_literal(address),
                            address_literal(beneficiary),
                            int_literal(account.allowances[beneficiary]),
                        )
                    )
                )

        delegations = [
            row_literal(
                (
                    address_literal(delegatee),
                    address_literal(delegator),
                    int_literal(staking.delegations[delegatee][delegator].shares),
                )
            )
            for delegatee in sorted(staking.delegations)
            for delegator in sorted(staking.delegations[delegatee])
        ]

        debonding = [
            row_literal(
                (
                    address_literal(delegatee),
                    address_literal(delegator),
                    int_literal(entry.shares),
                    int_literal(entry.debond_end),
                )
            )
            for delegatee in sorted(staking.debonding_delegations)
            for delegator in sorted(staking.debonding_delegations[delegatee])
            for entry in staking.debonding_delegations[delegatee][delegator]
        ]

        return BackendSection(
            title="Staking",
            blocks=(
                TableBlock(
                    "accounts",
                    (
                        "address",
                        "general_balance",
                        "nonce",
                        "escrow_balance_active",
                        "escrow_total_shares_active",
                        "escrow_balance_debonding",
                        "escrow_total_shares_debonding",
                    ),
                    tuple(accounts),
                ),
                TableBlock("allowances", ("owner", "beneficiary", "allowance"), tuple(allowances)),
                TableBlock("delegations", ("delegatee", "delegator", "shares"), tuple(delegations)),
                TableBlock(
                    "debonding_delegations",
                    ("delegatee", "delegator", "shares", "debond_end"),
                    tuple(debonding),
                ),
            ),
        )

    def _governance_section(self, document: GenesisDocument) -> BackendSection:
        governance = document.governance
        proposals = sorted(governance.proposals, key=lambda p: p.id)
        seen: set[int] = set()
        for proposal in proposals:
            if proposal.id in seen:
                raise DocumentError(f"Duplicate proposal {proposal.id}.")
            seen.add(proposal.id)

        votes = [
            row_literal(
                (
                    int_literal(proposal_id),
                    address_literal(entry.voter),
                    text_literal(entry.vote),
                )
            )
            for proposal_id in sorted(governance.vote_entries)
            for entry in governance.vote_entries[proposal_id]
        ]

        return BackendSection(
            title="Governance",
            blocks=(
                TableBlock(
                    "proposals",
                    (
                        "id",
                        "submitter",
                        "state",
                        "deposit",
                        "handler",
                        "cp_target_version",
                        "rhp_target_version",
                        "rcp_target_version",
                        "upgrade_epoch",
                        "cancels",
                        "created_at",
                        "closes_at",
                        "invalid_votes",
                    ),
                    tuple(proposal_row(p) for p in proposals),
                ),
                TableBlock("votes", ("proposal", "voter", "vote"), tuple(votes)),
            ),
        )
