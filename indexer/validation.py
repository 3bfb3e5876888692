"""Compare checkpointed chain state against the authoritative genesis document."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from decimal import Decimal
import logging
from typing import Any, Hashable, Mapping, Optional, Protocol, Sequence

from indexer.checkpoint import checkpoint_table, latest_checkpoint_height
from indexer.errors import CheckpointError
from indexer.genesis import GenesisDocument, Proposal
from indexer.migration_generator import KEY_MANAGER_NONE, merged_runtimes, open_entities, open_nodes
from indexer.sql_literals import chain_schema_name, qualified

logger = logging.getLogger(__name__)

NODE_FIELDS = (
    "entity_id",
    "expiration",
    "tls_pubkey",
    "tls_next_pubkey",
    "p2p_pubkey",
    "consensus_pubkey",
    "vrf_pubkey",
    "roles",
    "software_version",
)
RUNTIME_FIELDS = ("suspended", "kind", "tee_hardware", "key_manager")
ACCOUNT_FIELDS = (
    "general_balance",
    "nonce",
    "escrow_balance_active",
    "escrow_total_shares_active",
    "escrow_balance_debonding",
    "escrow_total_shares_debonding",
)
PROPOSAL_FIELDS = (
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
)


class ValidationClient(Protocol):
    def query(
        self,
        sql: str,
        params: Optional[Mapping[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> list[dict[str, Any]]:
        """Fetch all rows."""

    def query_row(
        self,
        sql: str,
        params: Optional[Mapping[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> Optional[Mapping[str, Any]]:
        """Fetch one row."""


@dataclass(frozen=True)
class Mismatch:
    """One disagreement between the document and a checkpoint table.

    ``field`` is None when a whole row is missing or unexpected.
    """

    table: str
    key: Any
    field: Optional[str]
    expected: Any
    actual: Any


@dataclass(frozen=True)
class ToleratedDiscrepancy:
    table: str
    key: Any
    detail: str


@dataclass
class ValidationReport:
    height: int
    mismatches: list[Mismatch] = field(default_factory=list)
    tolerated: list[ToleratedDiscrepancy] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.mismatches

    def as_dict(self) -> dict[str, Any]:
        return {
            "height": self.height,
            "ok": self.ok,
            "mismatches": [
                {
                    "table": m.table,
                    "key": _jsonable(m.key),
                    "field": m.field,
                    "expected": _jsonable(m.expected),
                    "actual": _jsonable(m.actual),
                }
                for m in self.mismatches
            ],
            "tolerated": [
                {"table": t.table, "key": _jsonable(t.key), "detail": t.detail} for t in self.tolerated
            ],
        }


def _jsonable(value: Any) -> Any:
    if isinstance(value, tuple):
        return [_jsonable(item) for item in value]
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, int) and not isinstance(value, bool) and abs(value) > 2**53:
        return str(value)
    return value


def _normalize(value: Any) -> Any:
    # NUMERIC columns come back as Decimal; every quantity here is integral.
    if isinstance(value, Decimal):
        return int(value)
    return value


def _row_values(row: Mapping[str, Any], fields: Sequence[str]) -> dict[str, Any]:
    return {name: _normalize(row.get(name)) for name in fields}


def _fetch(
    client: ValidationClient,
    schema: str,
    table: str,
    columns: Sequence[str],
    timeout: Optional[float],
) -> list[dict[str, Any]]:
    sql = f"SELECT {', '.join(columns)} FROM {qualified(schema, checkpoint_table(table))}"
    return client.query(sql, timeout=timeout)


def _compare_keyed(
    report: ValidationReport,
    table: str,
    expected: Mapping[Hashable, Mapping[str, Any]],
    actual: Mapping[Hashable, Mapping[str, Any]],
) -> None:
    for key in sorted(expected.keys() | actual.keys(), key=repr):
        want = expected.get(key)
        got = actual.get(key)
        if want is None or got is None:
            report.mismatches.append(Mismatch(table, key, None, want, got))
            continue
        for name, value in want.items():
            if got.get(name) != value:
                report.mismatches.append(Mismatch(table, key, name, value, got.get(name)))


def _compare_multiset(
    report: ValidationReport,
    table: str,
    expected: Counter,
    actual: Counter,
) -> None:
    for key in sorted(expected.keys() | actual.keys(), key=repr):
        if expected[key] != actual[key]:
            report.mismatches.append(Mismatch(table, key, None, expected[key], actual[key]))


def _proposal_values(proposal: Proposal) -> dict[str, Any]:
    upgrade = proposal.content.upgrade
    cancel_upgrade = proposal.content.cancel_upgrade
    return {
        "submitter": proposal.submitter,
        "state": proposal.state,
        "deposit": proposal.deposit,
        "handler": upgrade.handler if upgrade else None,
        "cp_target_version": str(upgrade.consensus_protocol) if upgrade else None,
        "rhp_target_version": str(upgrade.runtime_host_protocol) if upgrade else None,
        "rcp_target_version": str(upgrade.runtime_committee_protocol) if upgrade else None,
        "upgrade_epoch": upgrade.epoch if upgrade else None,
        "cancels": cancel_upgrade.proposal_id if cancel_upgrade else None,
        "created_at": proposal.created_at,
        "closes_at": proposal.closes_at,
        "invalid_votes": proposal.invalid_votes,
    }


def _validate_registry(
    report: ValidationReport,
    document: GenesisDocument,
    client: ValidationClient,
    schema: str,
    chain_context: Optional[str],
    timeout: Optional[float],
) -> None:
    entities = open_entities(document, chain_context)
    nodes = open_nodes(document, chain_context)

    actual_entities = {row["id"] for row in _fetch(client, schema, "entities", ("id",), timeout)}
    _compare_keyed(
        report,
        "entities",
        {entity.id: {} for entity in entities},
        {entity_id: {} for entity_id in actual_entities},
    )

    actual_nodes = {
        row["id"]: _row_values(row, NODE_FIELDS)
        for row in _fetch(client, schema, "nodes", ("id", *NODE_FIELDS), timeout)
    }
    expected_nodes = {
        node.id: {
            "entity_id": node.entity_id,
            "expiration": node.expiration,
            "tls_pubkey": node.tls_pubkey,
            "tls_next_pubkey": node.tls_next_pubkey,
            "p2p_pubkey": node.p2p_pubkey,
            "consensus_pubkey": node.consensus_pubkey,
            "vrf_pubkey": node.vrf_pubkey,
            "roles": node.roles,
            "software_version": node.software_version,
        }
        for node in nodes
    }
    _compare_keyed(report, "nodes", expected_nodes, actual_nodes)

    # Entities may list nodes that never registered; that is not a failure.
    for entity in entities:
        for node_id in sorted(entity.nodes):
            if node_id not in actual_nodes:
                report.tolerated.append(
                    ToleratedDiscrepancy(
                        "nodes", node_id, f"Listed by entity {entity.id} but has no registration record."
                    )
                )

    expected_runtimes = {
        runtime.id: {
            "suspended": suspended,
            "kind": runtime.kind,
            "tee_hardware": runtime.tee_hardware,
            "key_manager": runtime.key_manager if runtime.key_manager is not None else KEY_MANAGER_NONE,
        }
        for runtime, suspended in merged_runtimes(document)
    }
    actual_runtimes = {
        row["id"]: _row_values(row, RUNTIME_FIELDS)
        for row in _fetch(client, schema, "runtimes", ("id", *RUNTIME_FIELDS), timeout)
    }
    _compare_keyed(report, "runtimes", expected_runtimes, actual_runtimes)


def _validate_staking(
    report: ValidationReport,
    document: GenesisDocument,
    client: ValidationClient,
    schema: str,
    timeout: Optional[float],
) -> None:
    staking = document.staking

    expected_accounts = {
        address: {
            "general_balance": account.general_balance,
            "nonce": account.nonce,
            "escrow_balance_active": account.escrow_active_balance,
            "escrow_total_shares_active": account.escrow_active_shares,
            "escrow_balance_debonding": account.escrow_debonding_balance,
            "escrow_total_shares_debonding": account.escrow_debonding_shares,
        }
        for address, account in staking.ledger.items()
    }
    actual_accounts = {
        row["address"]: _row_values(row, ACCOUNT_FIELDS)
        for row in _fetch(client, schema, "accounts", ("address", *ACCOUNT_FIELDS), timeout)
    }
    _compare_keyed(report, "accounts", expected_accounts, actual_accounts)

    expected_allowances = {
        (owner, beneficiary): {"allowance": amount}
        for owner, account in staking.ledger.items()
        for beneficiary, amount in account.allowances.items()
    }
    actual_allowances = {
        (row["owner"], row["beneficiary"]): _row_values(row, ("allowance",))
        for row in _fetch(client, schema, "allowances", ("owner", "beneficiary", "allowance"), timeout)
    }
    _compare_keyed(report, "allowances", expected_allowances, actual_allowances)

    expected_delegations = {
        (delegatee, delegator): {"shares": delegation.shares}
        for delegatee, escrows in staking.delegations.items()
        for delegator, delegation in escrows.items()
    }
    actual_delegations = {
        (row["delegatee"], row["delegator"]): _row_values(row, ("shares",))
        for row in _fetch(client, schema, "delegations", ("delegatee", "delegator", "shares"), timeout)
    }
    _compare_keyed(report, "delegations", expected_delegations, actual_delegations)

    expected_debonding = Counter(
        (delegatee, delegator, entry.shares, entry.debond_end)
        for delegatee, escrows in staking.debonding_delegations.items()
        for delegator, entries in escrows.items()
        for entry in entries
    )
    actual_debonding = Counter(
        (row["delegatee"], row["delegator"], _normalize(row["shares"]), _normalize(row["debond_end"]))
        for row in _fetch(
            client,
            schema,
            "debonding_delegations",
            ("delegatee", "delegator", "shares", "debond_end"),
            timeout,
        )
    )
    _compare_multiset(report, "debonding_delegations", expected_debonding, actual_debonding)


def _validate_governance(
    report: ValidationReport,
    document: GenesisDocument,
    client: ValidationClient,
    schema: str,
    timeout: Optional[float],
) -> None:
    governance = document.governance
    expected_proposals = {proposal.id: _proposal_values(proposal) for proposal in governance.proposals}
    actual_proposals = {
        int(row["id"]): _row_values(row, PROPOSAL_FIELDS)
        for row in _fetch(client, schema, "proposals", ("id", *PROPOSAL_FIELDS), timeout)
    }
    _compare_keyed(report, "proposals", expected_proposals, actual_proposals)

    expected_votes = Counter(
        (proposal_id, entry.voter, entry.vote)
        for proposal_id, entries in governance.vote_entries.items()
        for entry in entries
    )
    actual_votes = Counter(
        (int(row["proposal"]), row["voter"], row["vote"])
        for row in _fetch(client, schema, "votes", ("proposal", "voter", "vote"), timeout)
    )
    _compare_multiset(report, "votes", expected_votes, actual_votes)


def validate_checkpoint(
    document: GenesisDocument,
    client: ValidationClient,
    chain_id: Optional[str] = None,
    chain_context: Optional[str] = None,
    timeout: Optional[float] = None,
) -> ValidationReport:
    """Validate the latest checkpoint of a chain against ``document``.

    ``chain_id`` defaults to the document's own chain ID. Raises
    ``CheckpointError`` when the chain has never been checkpointed.
    """
    schema = chain_schema_name(chain_id or document.chain_id)
    height = latest_checkpoint_height(client, schema, timeout=timeout)
    if height is None:
        raise CheckpointError(schema, "Run a checkpoint before validating.")

    report = ValidationReport(height=height)
    if document.height and document.height != height:
        report.tolerated.append(
            ToleratedDiscrepancy(
                "checkpointed_heights",
                height,
                f"Document is at height {document.height}.",
            )
        )
    _validate_registry(report, document, client, schema, chain_context, timeout)
    _validate_staking(report, document, client, schema, timeout)
    _validate_governance(report, document, client, schema, timeout)

    if report.ok:
        logger.info(
            "Checkpoint of %s at height %d matches the document (%d tolerated).",
            schema,
            height,
            len(report.tolerated),
        )
    else:
        logger.warning(
            "Checkpoint of %s at height %d has %d mismatches.", schema, height, len(report.mismatches)
        )
    return report
