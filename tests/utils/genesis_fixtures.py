"""Builders for signed genesis fixtures used across unit and integration tests."""

from __future__ import annotations

import base64
from dataclasses import dataclass
import hashlib
from typing import Any, Mapping, Optional, Sequence

import cbor2
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat

from indexer.envelope import (
    ENTITY_SIGNATURE_CONTEXT,
    NODE_SIGNATURE_CONTEXT,
    prepare_signer_message,
    signature_context,
)

BECH32_CHARSET = "qpzry9x8gf2tvdw0s3jn54khce6mua7l"
BIG_BALANCE = "123456789012345678901234567890"


@dataclass(frozen=True)
class SigningKey:
    private: Ed25519PrivateKey
    public: bytes

    @property
    def b64(self) -> str:
        return base64.b64encode(self.public).decode("ascii")

    def sign(self, context: str, message: bytes) -> bytes:
        return self.private.sign(prepare_signer_message(context, message))


def make_key(seed: str) -> SigningKey:
    private = Ed25519PrivateKey.from_private_bytes(hashlib.sha256(seed.encode("utf-8")).digest())
    public = private.public_key().public_bytes(Encoding.Raw, PublicFormat.Raw)
    return SigningKey(private=private, public=public)


def address(label: str) -> str:
    digest = hashlib.sha512(label.encode("utf-8")).digest()
    return "oasis1" + "".join(BECH32_CHARSET[b % 32] for b in digest[:40])


def _b64(raw: bytes) -> str:
    return base64.b64encode(raw).decode("ascii")


def _signature(key: SigningKey, context: str, raw: bytes) -> dict[str, str]:
    return {"public_key": key.b64, "signature": _b64(key.sign(context, raw))}


def entity_envelope(
    entity: SigningKey,
    nodes: Sequence[SigningKey] = (),
    chain_context: Optional[str] = None,
    signer: Optional[SigningKey] = None,
) -> dict[str, Any]:
    raw = cbor2.dumps({"v": 2, "id": entity.public, "nodes": [node.public for node in nodes]})
    context = signature_context(ENTITY_SIGNATURE_CONTEXT, chain_context)
    return {
        "untrusted_raw_value": _b64(raw),
        "signature": _signature(signer or entity, context, raw),
    }


def node_payload(
    node: SigningKey,
    entity: SigningKey,
    roles: int = 8,
    expiration: int = 32,
    next_tls: bool = True,
    vrf: bool = False,
    software_version: Optional[str] = None,
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "v": 2,
        "id": node.public,
        "entity_id": entity.public,
        "expiration": expiration,
        "tls": {"pub_key": make_key(f"{node.b64}/tls").public},
        "p2p": {"id": make_key(f"{node.b64}/p2p").public},
        "consensus": {"id": make_key(f"{node.b64}/consensus").public},
        "roles": roles,
    }
    if next_tls:
        payload["tls"]["next_pub_key"] = make_key(f"{node.b64}/tls-next").public
    if vrf:
        payload["vrf"] = {"id": make_key(f"{node.b64}/vrf").public}
    if software_version is not None:
        payload["software_version"] = software_version
    return payload


def node_envelope(
    node: SigningKey,
    entity: SigningKey,
    chain_context: Optional[str] = None,
    signers: Optional[Sequence[SigningKey]] = None,
    **payload_overrides: Any,
) -> dict[str, Any]:
    raw = cbor2.dumps(node_payload(node, entity, **payload_overrides))
    context = signature_context(NODE_SIGNATURE_CONTEXT, chain_context)
    return {
        "untrusted_raw_value": _b64(raw),
        "signatures": [_signature(key, context, raw) for key in (signers or (node, entity))],
    }


def tamper(envelope: Mapping[str, Any]) -> dict[str, Any]:
    """Flip one byte of the signed payload, keeping the original signatures."""
    raw = bytearray(base64.b64decode(envelope["untrusted_raw_value"]))
    raw[-1] ^= 0x01
    tampered = dict(envelope)
    tampered["untrusted_raw_value"] = _b64(bytes(raw))
    return tampered


ENTITY_KEY = make_key("entity-a")
NODE_KEY = make_key("node-1")
UNREGISTERED_NODE_KEY = make_key("node-2")
OWNER = address("owner")
BENEFICIARY = address("beneficiary")
VALIDATOR = address("validator")


def genesis_payload(chain_id: str = "test-chain", height: int = 100) -> dict[str, Any]:
    """A small but complete genesis document exercising every table."""
    return {
        "chain_id": chain_id,
        "height": height,
        "registry": {
            "entities": [entity_envelope(ENTITY_KEY, nodes=(NODE_KEY, UNREGISTERED_NODE_KEY)), None],
            "nodes": [node_envelope(NODE_KEY, ENTITY_KEY, vrf=True, software_version="22.2.1")],
            "runtimes": [{"id": "R1", "kind": 1, "tee_hardware": 0}],
            "suspended_runtimes": [{"id": "R2", "kind": 2, "tee_hardware": 1, "key_manager": "R1"}],
        },
        "staking": {
            "ledger": {
                OWNER: {
                    "general": {
                        "balance": BIG_BALANCE,
                        "nonce": 3,
                        "allowances": {BENEFICIARY: "50"},
                    },
                    "escrow": {
                        "active": {"balance": "1000", "total_shares": "1000"},
                        "debonding": {"balance": "20", "total_shares": "20"},
                    },
                },
                VALIDATOR: {"general": {"balance": "7"}},
            },
            "delegations": {VALIDATOR: {OWNER: {"shares": "500"}}},
            "debonding_delegations": {
                VALIDATOR: {
                    OWNER: [
                        {"shares": "10", "debond_end": 42},
                        {"shares": "10", "debond_end": 42},
                    ]
                }
            },
        },
        "governance": {
            "proposals": [
                {
                    "id": 2,
                    "submitter": OWNER,
                    "state": 3,
                    "deposit": "100",
                    "content": {"cancel_upgrade": {"proposal_id": 1}},
                    "created_at": 12,
                    "closes_at": 22,
                },
                {
                    "id": 1,
                    "submitter": OWNER,
                    "state": 1,
                    "deposit": "100",
                    "content": {
                        "upgrade": {
                            "v": 1,
                            "handler": "upgrade-22",
                            "target": {
                                "consensus_protocol": {"major": 6},
                                "runtime_host_protocol": {"major": 5, "minor": 1},
                                "runtime_committee_protocol": {"major": 4, "patch": 2},
                            },
                            "epoch": 200,
                        }
                    },
                    "created_at": 10,
                    "closes_at": 20,
                    "invalid_votes": "1",
                },
            ],
            "vote_entries": {"1": [{"voter": VALIDATOR, "vote": 1}]},
        },
    }
