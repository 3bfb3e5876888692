"""Verify-and-decode for signed registry envelopes.

Registry descriptors arrive as CBOR payloads wrapped in Ed25519 signed
envelopes. A payload is only decoded after every signature on it verifies
against the domain-separated signature context for its envelope kind.
"""

from __future__ import annotations

import base64
import logging
from typing import Any, Generic, Mapping, Optional, TypeVar

import cbor2
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey

from indexer.errors import DocumentError, SignatureMismatchError
from indexer.genesis import Entity, Node, Signature, SignedEnvelope

logger = logging.getLogger(__name__)

T = TypeVar("T")

ENTITY_SIGNATURE_CONTEXT = "oasis-core/registry: register entity"
NODE_SIGNATURE_CONTEXT = "oasis-core/registry: register node"
PUBLIC_KEY_SIZE = 32

ROLE_NAMES: tuple[tuple[int, str], ...] = (
    (1 << 0, "compute"),
    (1 << 1, "storage"),
    (1 << 2, "key-manager"),
    (1 << 3, "validator"),
    (1 << 4, "consensus-rpc"),
    (1 << 5, "storage-rpc"),
)
_ROLES_ALL = sum(bit for bit, _ in ROLE_NAMES)


def signature_context(base: str, chain_context: Optional[str] = None) -> str:
    """Return the signature context, chain-separated when a chain context is given."""
    if chain_context:
        return f"{base} for chain {chain_context}"
    return base


def prepare_signer_message(context: str, message: bytes) -> bytes:
    """Hash the context and message the way the signer does: SHA-512/256(context || message)."""
    digest = hashes.Hash(hashes.SHA512_256())
    digest.update(context.encode("utf-8"))
    digest.update(message)
    return digest.finalize()


def verify_signature(signature: Signature, context: str, message: bytes) -> bool:
    if len(signature.public_key) != PUBLIC_KEY_SIZE:
        return False
    try:
        key = Ed25519PublicKey.from_public_bytes(signature.public_key)
        key.verify(signature.signature, prepare_signer_message(context, message))
    except (InvalidSignature, ValueError):
        return False
    return True


def roles_string(mask: int) -> str:
    """Render a node role bitmask as a comma-separated role list."""
    if mask & ~_ROLES_ALL:
        return "[invalid roles]"
    return ",".join(name for bit, name in ROLE_NAMES if mask & bit)


def public_key_string(raw: bytes) -> str:
    return base64.b64encode(raw).decode("ascii")


def _public_key(value: Any, where: str, default_zero: bool = False) -> str:
    if value is None and default_zero:
        return public_key_string(bytes(PUBLIC_KEY_SIZE))
    if not isinstance(value, (bytes, bytearray)) or len(value) != PUBLIC_KEY_SIZE:
        raise DocumentError(f"{where}: expected a {PUBLIC_KEY_SIZE}-byte public key.")
    return public_key_string(bytes(value))


def _mapping(value: Any, where: str) -> Mapping[Any, Any]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise DocumentError(f"{where}: expected a map, got {type(value).__name__}.")
    return value


def _int(value: Any, where: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise DocumentError(f"{where}: expected an unsigned integer, got {value!r}.")
    return value


class EnvelopeOpener(Generic[T]):
    """Verify-and-decode for one envelope kind."""

    kind = "envelope"
    context_base = ""

    def open(self, envelope: SignedEnvelope, chain_context: Optional[str] = None) -> T:
        context = signature_context(self.context_base, chain_context)
        self._check_signers(envelope)
        for signature in envelope.signatures:
            if not verify_signature(signature, context, envelope.untrusted_raw_value):
                raise SignatureMismatchError(self.kind, public_key_string(signature.public_key), context)
        try:
            payload = cbor2.loads(envelope.untrusted_raw_value)
        except (cbor2.CBORDecodeError, ValueError) as exc:
            raise DocumentError(f"Signed {self.kind} payload is not valid CBOR: {exc}") from exc
        decoded = self.decode(_mapping(payload, self.kind))
        self.check_decoded(envelope, decoded)
        return decoded

    def _check_signers(self, envelope: SignedEnvelope) -> None:
        if not envelope.signatures:
            raise DocumentError(f"Signed {self.kind} envelope carries no signatures.")

    def decode(self, payload: Mapping[Any, Any]) -> T:
        raise NotImplementedError

    def check_decoded(self, envelope: SignedEnvelope, decoded: T) -> None:
        """Hook for kind-specific checks binding signers to the decoded descriptor."""


class SignedEntityOpener(EnvelopeOpener[Entity]):
    """Entities are self-signed with exactly one signature by the entity key."""

    kind = "entity"
    context_base = ENTITY_SIGNATURE_CONTEXT

    def _check_signers(self, envelope: SignedEnvelope) -> None:
        if len(envelope.signatures) != 1:
            raise DocumentError(
                f"Signed entity envelope must carry exactly one signature, got {len(envelope.signatures)}."
            )

    def decode(self, payload: Mapping[Any, Any]) -> Entity:
        nodes = payload.get("nodes") or []
        if not isinstance(nodes, list):
            raise DocumentError("entity.nodes: expected a list.")
        return Entity(
            id=_public_key(payload.get("id"), "entity.id"),
            nodes=tuple(_public_key(node, f"entity.nodes[{i}]") for i, node in enumerate(nodes)),
        )

    def check_decoded(self, envelope: SignedEnvelope, decoded: Entity) -> None:
        signer = public_key_string(envelope.signatures[0].public_key)
        if signer != decoded.id:
            raise DocumentError(f"Entity {decoded.id} is signed by a different key ({signer}).")


class MultiSignedNodeOpener(EnvelopeOpener[Node]):
    """Nodes may carry several signatures; every one of them must verify."""

    kind = "node"
    context_base = NODE_SIGNATURE_CONTEXT

    def decode(self, payload: Mapping[Any, Any]) -> Node:
        tls = _mapping(payload.get("tls"), "node.tls")
        p2p = _mapping(payload.get("p2p"), "node.p2p")
        consensus = _mapping(payload.get("consensus"), "node.consensus")
        vrf = payload.get("vrf")
        software_version = payload.get("software_version")
        if software_version is not None and not isinstance(software_version, str):
            raise DocumentError("node.software_version: expected a string.")
        return Node(
            id=_public_key(payload.get("id"), "node.id"),
            entity_id=_public_key(payload.get("entity_id"), "node.entity_id"),
            expiration=_int(payload.get("expiration", 0), "node.expiration"),
            tls_pubkey=_public_key(tls.get("pub_key"), "node.tls.pub_key"),
            tls_next_pubkey=_public_key(tls.get("next_pub_key"), "node.tls.next_pub_key", default_zero=True),
            p2p_pubkey=_public_key(p2p.get("id"), "node.p2p.id"),
            consensus_pubkey=_public_key(consensus.get("id"), "node.consensus.id"),
            roles=roles_string(_int(payload.get("roles", 0), "node.roles")),
            vrf_pubkey=None if vrf is None else _public_key(_mapping(vrf, "node.vrf").get("id"), "node.vrf.id"),
            software_version=software_version,
        )


ENTITY_OPENER = SignedEntityOpener()
NODE_OPENER = MultiSignedNodeOpener()


def open_entity(envelope: SignedEnvelope, chain_context: Optional[str] = None) -> Entity:
    return ENTITY_OPENER.open(envelope, chain_context)


def open_node(envelope: SignedEnvelope, chain_context: Optional[str] = None) -> Node:
    return NODE_OPENER.open(envelope, chain_context)
