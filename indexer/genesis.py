"""Genesis document data model and upstream JSON loader."""

from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass, field
import json
import logging
from pathlib import Path
from typing import Any, Mapping, Optional, Protocol

from indexer.errors import DocumentError

logger = logging.getLogger(__name__)

RUNTIME_KINDS: Mapping[int, str] = {0: "invalid", 1: "compute", 2: "keymanager"}
TEE_HARDWARE: Mapping[int, str] = {0: "none", 1: "intel-sgx"}
PROPOSAL_STATES: Mapping[int, str] = {1: "active", 2: "passed", 3: "rejected", 4: "failed"}
VOTE_CHOICES: Mapping[int, str] = {1: "yes", 2: "no", 3: "abstain"}


@dataclass(frozen=True)
class Signature:
    public_key: bytes
    signature: bytes


@dataclass(frozen=True)
class SignedEnvelope:
    """Opaque signed payload; only trusted after verify-and-decode."""

    untrusted_raw_value: bytes
    signatures: tuple[Signature, ...]


@dataclass(frozen=True)
class Entity:
    id: str
    nodes: tuple[str, ...] = ()


@dataclass(frozen=True)
class Node:
    id: str
    entity_id: str
    expiration: int
    tls_pubkey: str
    tls_next_pubkey: str
    p2p_pubkey: str
    consensus_pubkey: str
    roles: str
    vrf_pubkey: Optional[str] = None
    software_version: Optional[str] = None


@dataclass(frozen=True)
class Runtime:
    id: str
    kind: str
    tee_hardware: str
    key_manager: Optional[str] = None


@dataclass(frozen=True)
class Account:
    general_balance: int = 0
    nonce: int = 0
    escrow_active_balance: int = 0
    escrow_active_shares: int = 0
    escrow_debonding_balance: int = 0
    escrow_debonding_shares: int = 0
    allowances: Mapping[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class Delegation:
    shares: int


@dataclass(frozen=True)
class DebondingDelegation:
    shares: int
    debond_end: int


@dataclass(frozen=True)
class Version:
    major: int = 0
    minor: int = 0
    patch: int = 0

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}.{self.patch}"


@dataclass(frozen=True)
class UpgradeProposal:
    handler: str
    consensus_protocol: Version
    runtime_host_protocol: Version
    runtime_committee_protocol: Version
    epoch: int


@dataclass(frozen=True)
class CancelUpgradeProposal:
    proposal_id: int


@dataclass(frozen=True)
class ProposalContent:
    upgrade: Optional[UpgradeProposal] = None
    cancel_upgrade: Optional[CancelUpgradeProposal] = None


@dataclass(frozen=True)
class Proposal:
    id: int
    submitter: str
    state: str
    deposit: int
    content: ProposalContent
    created_at: int
    closes_at: int
    invalid_votes: int = 0


@dataclass(frozen=True)
class VoteEntry:
    voter: str
    vote: str


@dataclass(frozen=True)
class RegistryGenesis:
    entities: tuple[Optional[SignedEnvelope], ...] = ()
    nodes: tuple[Optional[SignedEnvelope], ...] = ()
    runtimes: tuple[Runtime, ...] = ()
    suspended_runtimes: tuple[Runtime, ...] = ()


@dataclass(frozen=True)
class StakingGenesis:
    ledger: Mapping[str, Account] = field(default_factory=dict)
    delegations: Mapping[str, Mapping[str, Delegation]] = field(default_factory=dict)
    debonding_delegations: Mapping[str, Mapping[str, tuple[DebondingDelegation, ...]]] = field(
        default_factory=dict
    )


@dataclass(frozen=True)
class GovernanceGenesis:
    proposals: tuple[Proposal, ...] = ()
    vote_entries: Mapping[int, tuple[VoteEntry, ...]] = field(default_factory=dict)


@dataclass(frozen=True)
class GenesisDocument:
    chain_id: str
    height: int = 0
    registry: RegistryGenesis = field(default_factory=RegistryGenesis)
    staking: StakingGenesis = field(default_factory=StakingGenesis)
    governance: GovernanceGenesis = field(default_factory=GovernanceGenesis)


class GenesisSource(Protocol):
    """Supplier of authoritative chain state snapshots."""

    def genesis_document(self, height: Optional[int] = None) -> GenesisDocument:
        """Return the snapshot at height, or the source's only snapshot when None."""


class FileGenesisSource:
    """Genesis source backed by a single exported genesis JSON file."""

    def __init__(self, path: Path) -> None:
        self._path = Path(path)
        self._document: Optional[GenesisDocument] = None

    def genesis_document(self, height: Optional[int] = None) -> GenesisDocument:
        if self._document is None:
            self._document = load_genesis_document(self._path)
        if height is not None and height != self._document.height:
            logger.warning(
                "Genesis file %s is at height %d, requested %d.",
                self._path,
                self._document.height,
                height,
            )
        return self._document


def _mapping(value: Any, where: str) -> Mapping[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise DocumentError(f"{where}: expected an object, got {type(value).__name__}.")
    return value


def _sequence(value: Any, where: str) -> list[Any]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise DocumentError(f"{where}: expected a list, got {type(value).__name__}.")
    return value


def _uint(value: Any, where: str) -> int:
    """Parse an unsigned integer, including arbitrary-precision decimal strings."""
    if isinstance(value, bool):
        raise DocumentError(f"{where}: expected an unsigned integer, got a boolean.")
    if isinstance(value, int):
        parsed = value
    elif isinstance(value, str) and value.isascii() and value.isdigit():
        parsed = int(value, 10)
    else:
        raise DocumentError(f"{where}: expected an unsigned integer, got {value!r}.")
    if parsed < 0:
        raise DocumentError(f"{where}: expected an unsigned integer, got {parsed}.")
    return parsed


def _text(value: Any, where: str) -> str:
    if not isinstance(value, str):
        raise DocumentError(f"{where}: expected a string, got {type(value).__name__}.")
    return value


def _b64(value: Any, where: str) -> bytes:
    try:
        return base64.b64decode(_text(value, where), validate=True)
    except (binascii.Error, ValueError) as exc:
        raise DocumentError(f"{where}: invalid base64 payload.") from exc


def _enum_text(value: Any, names: Mapping[int, str], where: str) -> str:
    if isinstance(value, str):
        return value
    code = _uint(value, where)
    if code not in names:
        raise DocumentError(f"{where}: unknown code {code}.")
    return names[code]


def _parse_signature(payload: Any, where: str) -> Signature:
    data = _mapping(payload, where)
    return Signature(
        public_key=_b64(data.get("public_key"), f"{where}.public_key"),
        signature=_b64(data.get("signature"), f"{where}.signature"),
    )


def parse_signed_envelope(payload: Any, where: str) -> Optional[SignedEnvelope]:
    if payload is None:
        return None
    data = _mapping(payload, where)
    if "signatures" in data:
        signatures = tuple(
            _parse_signature(item, f"{where}.signatures[{i}]")
            for i, item in enumerate(_sequence(data["signatures"], f"{where}.signatures"))
        )
    elif "signature" in data:
        signatures = (_parse_signature(data["signature"], f"{where}.signature"),)
    else:
        raise DocumentError(f"{where}: envelope carries no signature.")
    return SignedEnvelope(
        untrusted_raw_value=_b64(data.get("untrusted_raw_value"), f"{where}.untrusted_raw_value"),
        signatures=signatures,
    )


def parse_runtime(payload: Any, where: str) -> Runtime:
    data = _mapping(payload, where)
    key_manager = data.get("key_manager")
    return Runtime(
        id=_text(data.get("id"), f"{where}.id"),
        kind=_enum_text(data.get("kind", 0), RUNTIME_KINDS, f"{where}.kind"),
        tee_hardware=_enum_text(data.get("tee_hardware", 0), TEE_HARDWARE, f"{where}.tee_hardware"),
        key_manager=None if key_manager is None else _text(key_manager, f"{where}.key_manager"),
    )


def _parse_registry(payload: Any) -> RegistryGenesis:
    data = _mapping(payload, "registry")
    return RegistryGenesis(
        entities=tuple(
            parse_signed_envelope(item, f"registry.entities[{i}]")
            for i, item in enumerate(_sequence(data.get("entities"), "registry.entities"))
        ),
        nodes=tuple(
            parse_signed_envelope(item, f"registry.nodes[{i}]")
            for i, item in enumerate(_sequence(data.get("nodes"), "registry.nodes"))
        ),
        runtimes=tuple(
            parse_runtime(item, f"registry.runtimes[{i}]")
            for i, item in enumerate(_sequence(data.get("runtimes"), "registry.runtimes"))
            if item is not None
        ),
        suspended_runtimes=tuple(
            parse_runtime(item, f"registry.suspended_runtimes[{i}]")
            for i, item in enumerate(
                _sequence(data.get("suspended_runtimes"), "registry.suspended_runtimes")
            )
            if item is not None
        ),
    )


def _parse_account(payload: Any, where: str) -> Account:
    data = _mapping(payload, where)
    general = _mapping(data.get("general"), f"{where}.general")
    escrow = _mapping(data.get("escrow"), f"{where}.escrow")
    active = _mapping(escrow.get("active"), f"{where}.escrow.active")
    debonding = _mapping(escrow.get("debonding"), f"{where}.escrow.debonding")
    allowances = {
        beneficiary: _uint(amount, f"{where}.general.allowances.{beneficiary}")
        for beneficiary, amount in _mapping(
            general.get("allowances"), f"{where}.general.allowances"
        ).items()
    }
    return Account(
        general_balance=_uint(general.get("balance", 0), f"{where}.general.balance"),
        nonce=_uint(general.get("nonce", 0), f"{where}.general.nonce"),
        escrow_active_balance=_uint(active.get("balance", 0), f"{where}.escrow.active.balance"),
        escrow_active_shares=_uint(active.get("total_shares", 0), f"{where}.escrow.active.total_shares"),
        escrow_debonding_balance=_uint(debonding.get("balance", 0), f"{where}.escrow.debonding.balance"),
        escrow_debonding_shares=_uint(
            debonding.get("total_shares", 0), f"{where}.escrow.debonding.total_shares"
        ),
        allowances=allowances,
    )


def _parse_staking(payload: Any) -> StakingGenesis:
    data = _mapping(payload, "staking")
    ledger = {
        address: _parse_account(account, f"staking.ledger.{address}")
        for address, account in _mapping(data.get("ledger"), "staking.ledger").items()
    }
    delegations: dict[str, dict[str, Delegation]] = {}
    for delegatee, escrows in _mapping(data.get("delegations"), "staking.delegations").items():
        where = f"staking.delegations.{delegatee}"
        delegations[delegatee] = {
            delegator: Delegation(
                shares=_uint(_mapping(item, f"{where}.{delegator}").get("shares", 0), f"{where}.{delegator}.shares")
            )
            for delegator, item in _mapping(escrows, where).items()
        }
    debonding: dict[str, dict[str, tuple[DebondingDelegation, ...]]] = {}
    for delegatee, escrows in _mapping(
        data.get("debonding_delegations"), "staking.debonding_delegations"
    ).items():
        where = f"staking.debonding_delegations.{delegatee}"
        per_delegator: dict[str, tuple[DebondingDelegation, ...]] = {}
        for delegator, entries in _mapping(escrows, where).items():
            parsed = []
            for i, entry in enumerate(_sequence(entries, f"{where}.{delegator}")):
                item = _mapping(entry, f"{where}.{delegator}[{i}]")
                parsed.append(
                    DebondingDelegation(
                        shares=_uint(item.get("shares", 0), f"{where}.{delegator}[{i}].shares"),
                        debond_end=_uint(item.get("debond_end", 0), f"{where}.{delegator}[{i}].debond_end"),
                    )
                )
            per_delegator[delegator] = tuple(parsed)
        debonding[delegatee] = per_delegator
    return StakingGenesis(ledger=ledger, delegations=delegations, debonding_delegations=debonding)


def _parse_version(payload: Any, where: str) -> Version:
    data = _mapping(payload, where)
    return Version(
        major=_uint(data.get("major", 0), f"{where}.major"),
        minor=_uint(data.get("minor", 0), f"{where}.minor"),
        patch=_uint(data.get("patch", 0), f"{where}.patch"),
    )


def _parse_content(payload: Any, where: str) -> ProposalContent:
    data = _mapping(payload, where)
    upgrade: Optional[UpgradeProposal] = None
    cancel_upgrade: Optional[CancelUpgradeProposal] = None
    if data.get("upgrade") is not None:
        raw = _mapping(data["upgrade"], f"{where}.upgrade")
        target = _mapping(raw.get("target"), f"{where}.upgrade.target")
        upgrade = UpgradeProposal(
            handler=_text(raw.get("handler", ""), f"{where}.upgrade.handler"),
            consensus_protocol=_parse_version(
                target.get("consensus_protocol"), f"{where}.upgrade.target.consensus_protocol"
            ),
            runtime_host_protocol=_parse_version(
                target.get("runtime_host_protocol"), f"{where}.upgrade.target.runtime_host_protocol"
            ),
            runtime_committee_protocol=_parse_version(
                target.get("runtime_committee_protocol"),
                f"{where}.upgrade.target.runtime_committee_protocol",
            ),
            epoch=_uint(raw.get("epoch", 0), f"{where}.upgrade.epoch"),
        )
    if data.get("cancel_upgrade") is not None:
        raw = _mapping(data["cancel_upgrade"], f"{where}.cancel_upgrade")
        cancel_upgrade = CancelUpgradeProposal(
            proposal_id=_uint(raw.get("proposal_id"), f"{where}.cancel_upgrade.proposal_id")
        )
    return ProposalContent(upgrade=upgrade, cancel_upgrade=cancel_upgrade)


def _parse_proposal(payload: Any, where: str) -> Proposal:
    data = _mapping(payload, where)
    return Proposal(
        id=_uint(data.get("id"), f"{where}.id"),
        submitter=_text(data.get("submitter"), f"{where}.submitter"),
        state=_enum_text(data.get("state"), PROPOSAL_STATES, f"{where}.state"),
        deposit=_uint(data.get("deposit", 0), f"{where}.deposit"),
        content=_parse_content(data.get("content"), f"{where}.content"),
        created_at=_uint(data.get("created_at", 0), f"{where}.created_at"),
        closes_at=_uint(data.get("closes_at", 0), f"{where}.closes_at"),
        invalid_votes=_uint(data.get("invalid_votes", 0), f"{where}.invalid_votes"),
    )


def _parse_governance(payload: Any) -> GovernanceGenesis:
    data = _mapping(payload, "governance")
    proposals = tuple(
        _parse_proposal(item, f"governance.proposals[{i}]")
        for i, item in enumerate(_sequence(data.get("proposals"), "governance.proposals"))
        if item is not None
    )
    vote_entries: dict[int, tuple[VoteEntry, ...]] = {}
    for proposal_id, entries in _mapping(data.get("vote_entries"), "governance.vote_entries").items():
        where = f"governance.vote_entries.{proposal_id}"
        vote_entries[_uint(proposal_id, where)] = tuple(
            VoteEntry(
                voter=_text(_mapping(entry, f"{where}[{i}]").get("voter"), f"{where}[{i}].voter"),
                vote=_enum_text(_mapping(entry, f"{where}[{i}]").get("vote"), VOTE_CHOICES, f"{where}[{i}].vote"),
            )
            for i, entry in enumerate(_sequence(entries, where))
        )
    return GovernanceGenesis(proposals=proposals, vote_entries=vote_entries)


def parse_genesis_document(payload: Any) -> GenesisDocument:
    """Build a ``GenesisDocument`` from the upstream genesis JSON structure."""
    data = _mapping(payload, "document")
    chain_id = _text(data.get("chain_id"), "chain_id")
    if chain_id.strip() == "":
        raise DocumentError("chain_id: must not be blank.")
    return GenesisDocument(
        chain_id=chain_id,
        height=_uint(data.get("height", 0), "height"),
        registry=_parse_registry(data.get("registry")),
        staking=_parse_staking(data.get("staking")),
        governance=_parse_governance(data.get("governance")),
    )


def load_genesis_document(path: Path) -> GenesisDocument:
    """Read and parse a genesis JSON file."""
    try:
        payload = json.loads(Path(path).read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise DocumentError(f"Genesis file {path} is not valid JSON: {exc}") from exc
    document = parse_genesis_document(payload)
    logger.info("Loaded genesis document chain_id=%s height=%d from %s.", document.chain_id, document.height, path)
    return document
