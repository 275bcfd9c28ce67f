"""
OpenDID Gateway
ENS-ownership-gated management of the `opendid` text record and generation
of the digests the claims ledger expects to be signed.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence

from eth_account import Account
from web3 import Web3

from opendid.errors import (
    AlreadyExists,
    EmptyInput,
    InputLengthMismatch,
    NotOwner,
    OpenDIDError,
    ResolverMissing,
    Unauthorized,
)
from opendid.services.ens import namehash
from opendid.services.events import (
    ClaimMessageGenerated,
    DIDClaimed,
    DIDRevoked,
    DIDUpdated,
    EventLog,
)
from opendid.services.signatures import (
    CLAIM_DID_TAG,
    REVOKE_DID_TAG,
    UPDATE_DID_TAG,
    ZERO_ADDRESS,
    append_digest,
    record_digest,
    recover_signer,
    registration_digest,
    same_address,
)

logger = logging.getLogger(__name__)

TEXT_RECORD_KEY = "opendid"
DID_PREFIX = "did:opendid:"


def did_for_name(ens_name: str) -> str:
    """DID string for an ENS name, e.g. did:opendid:alice.eth"""
    return f"{DID_PREFIX}{ens_name}"


@dataclass
class ENSNameInfo:
    """Snapshot of an ENS name as seen by the gateway."""
    name: str
    node: bytes
    owner: str
    resolver: Optional[str]
    has_did: bool


class OpenDIDGateway:
    """
    Gateway between ENS names and the claims ledger.

    Args:
        ens_registry: registry exposing owner(node) and resolver(node)
        ledger: claims ledger providing `address` and get_current_nonce(did);
            required only for message generation
        address: gateway address bound into signed record writes

    `claim_did`, `update_did` and `revoke_did` take an already authenticated
    `sender`. Untrusted callers go through the `*_signed` variants, which
    recover the sender from an owner signature over record_digest at the
    name's current nonce.
    """

    def __init__(self, ens_registry, ledger=None, address: Optional[str] = None):
        self.ens = ens_registry
        self.ledger = ledger
        self.address = Web3.to_checksum_address(address) if address else Account.create().address
        self.events = EventLog("OpenDID")
        self._lock = threading.RLock()
        self._nonces: Dict[bytes, int] = {}

    # ============ Namehash ============

    @staticmethod
    def namehash(name: str) -> bytes:
        return namehash(name)

    def get_namehash(self, name: str) -> bytes:
        return namehash(name)

    # ============ Guards ============

    def _authorized_resolver(self, name: str, sender: str):
        """
        Ownership then resolver check; returns (node, resolver).

        Unowned names (zero-address owner) never authorize anyone.
        """
        node = namehash(name)
        if not same_address(self.ens.owner(node), sender):
            raise NotOwner(f"{sender} does not own {name}", {"name": name})
        resolver = self.ens.resolver(node)
        if resolver is None:
            raise ResolverMissing(f"No resolver set for {name}", {"name": name})
        return node, resolver

    # ============ Text record writes ============

    def claim_did(self, name: str, cid: str, sender: str) -> str:
        """
        Write `did:opendid:<cid>` to the name's text record.

        Returns:
            The DID record written
        """
        if not name or not cid:
            raise EmptyInput("ENS name and CID are required")

        with self._lock:
            node, resolver = self._authorized_resolver(name, sender)
            if resolver.text(node, TEXT_RECORD_KEY):
                raise AlreadyExists(f"DID already claimed for {name}", {"name": name})

            record = f"{DID_PREFIX}{cid}"
            resolver.set_text(node, TEXT_RECORD_KEY, record)
            self.events.emit(DIDClaimed(node=node, ens_name=name, did_record=record, claimer=sender))

        logger.info(f"[+] DID claimed for {name}: {record}")
        return record

    def update_did(self, name: str, new_cid: str, sender: str) -> str:
        """Overwrite the name's DID record; returns the new record."""
        if not name or not new_cid:
            raise EmptyInput("ENS name and CID are required")

        with self._lock:
            node, resolver = self._authorized_resolver(name, sender)
            old_record = resolver.text(node, TEXT_RECORD_KEY)
            new_record = f"{DID_PREFIX}{new_cid}"
            resolver.set_text(node, TEXT_RECORD_KEY, new_record)
            self.events.emit(DIDUpdated(
                node=node,
                ens_name=name,
                old_record=old_record,
                new_record=new_record,
                updater=sender
            ))

        logger.info(f"[+] DID updated for {name}: {old_record!r} -> {new_record!r}")
        return new_record

    def revoke_did(self, name: str, sender: str) -> None:
        """Clear the name's DID record (the record stays, emptied)."""
        if not name:
            raise EmptyInput("ENS name is required")

        with self._lock:
            node, resolver = self._authorized_resolver(name, sender)
            resolver.set_text(node, TEXT_RECORD_KEY, "")
            self.events.emit(DIDRevoked(node=node, ens_name=name, revoker=sender))

        logger.info(f"[+] DID revoked for {name}")

    def batch_claim_did(self, names: Sequence[str], cids: Sequence[str], sender: str) -> None:
        """
        Claim several names at once.

        Each item is attempted on its own; a failing item is logged and
        skipped without touching the others. Callers check `has_did`
        afterwards to learn which items landed.
        """
        if len(names) != len(cids):
            raise InputLengthMismatch(
                "names and cids must have the same length",
                {"names": len(names), "cids": len(cids)}
            )

        for name, cid in zip(names, cids):
            try:
                self.claim_did(name, cid, sender)
            except OpenDIDError as e:
                logger.warning(f"[!] Batch claim skipped {name!r}: {e.code} {e.message}")

    # ============ Signed text record writes ============

    def get_name_nonce(self, name: str) -> int:
        return self._nonces.get(namehash(name), 0)

    def get_record_message(self, tag: str, name: str, cid: str = "") -> bytes:
        """Digest the owner of `name` signs for a `tag` write at the current nonce."""
        return record_digest(tag, name, cid, self.address, self.get_name_nonce(name))

    def _signed_write(self, tag: str, name: str, cid: str, signature, write: Callable[[str], str]) -> str:
        """Recover the signer, run `write(signer)` and advance the name's nonce on success."""
        with self._lock:
            node = namehash(name)
            nonce = self._nonces.get(node, 0)
            signer = recover_signer(record_digest(tag, name, cid, self.address, nonce), signature)
            if signer == ZERO_ADDRESS:
                raise Unauthorized(f"Invalid {tag} signature", {"name": name})

            result = write(signer)
            self._nonces[node] = nonce + 1
        return result

    def claim_did_signed(self, name: str, cid: str, signature) -> str:
        return self._signed_write(
            CLAIM_DID_TAG, name, cid, signature,
            lambda signer: self.claim_did(name, cid, signer)
        )

    def update_did_signed(self, name: str, new_cid: str, signature) -> str:
        return self._signed_write(
            UPDATE_DID_TAG, name, new_cid, signature,
            lambda signer: self.update_did(name, new_cid, signer)
        )

    def revoke_did_signed(self, name: str, signature) -> str:
        def revoke(signer: str) -> str:
            self.revoke_did(name, signer)
            return ""
        return self._signed_write(REVOKE_DID_TAG, name, "", signature, revoke)

    def batch_claim_did_signed(
        self,
        names: Sequence[str],
        cids: Sequence[str],
        signatures: Sequence
    ) -> None:
        """Signed counterpart of `batch_claim_did`; one owner signature per item."""
        if not (len(names) == len(cids) == len(signatures)):
            raise InputLengthMismatch(
                "names, cids and signatures must have the same length",
                {"names": len(names), "cids": len(cids), "signatures": len(signatures)}
            )

        for name, cid, signature in zip(names, cids, signatures):
            try:
                self.claim_did_signed(name, cid, signature)
            except OpenDIDError as e:
                logger.warning(f"[!] Batch claim skipped {name!r}: {e.code} {e.message}")

    # ============ Reads ============

    def get_did(self, name: str) -> str:
        if not name:
            return ""
        node = namehash(name)
        resolver = self.ens.resolver(node)
        if resolver is None:
            return ""
        return resolver.text(node, TEXT_RECORD_KEY)

    def has_did(self, name: str) -> bool:
        return len(self.get_did(name)) > 0

    def owns_name(self, name: str, address: str) -> bool:
        if not name:
            return False
        return same_address(self.ens.owner(namehash(name)), address)

    def get_ens_name_info(self, name: str) -> ENSNameInfo:
        node = namehash(name)
        resolver = self.ens.resolver(node) if name else None
        return ENSNameInfo(
            name=name,
            node=node,
            owner=self.ens.owner(node),
            resolver=getattr(resolver, "address", None),
            has_did=self.has_did(name)
        )

    # ============ Message generation ============

    def _require_ledger(self):
        if self.ledger is None:
            raise OpenDIDError("Gateway is not linked to a claims ledger")
        return self.ledger

    def _emit_message(self, name: str, message_hash: bytes, sender: str) -> None:
        self.events.emit(ClaimMessageGenerated(
            node=namehash(name),
            ens_name=name,
            message_hash=message_hash,
            claimer=sender
        ))

    def generate_registration_message(self, name: str, sender: str) -> bytes:
        """
        Digest the owner of `name` signs to register did:opendid:<name>
        on the ledger at its current nonce.
        """
        if not name:
            raise EmptyInput("ENS name is required")
        ledger = self._require_ledger()

        with self._lock:
            if not self.owns_name(name, sender):
                raise NotOwner(f"{sender} does not own {name}", {"name": name})

            did = did_for_name(name)
            message_hash = registration_digest(did, ledger.address, ledger.get_current_nonce(did))
            self._emit_message(name, message_hash, sender)

        return message_hash

    def generate_claim_message(self, name: str, cid: str, claim_type: str, sender: str) -> bytes:
        """Digest the owner of `name` signs to append `cid` under `claim_type`."""
        if not name or not cid or not claim_type:
            raise EmptyInput("ENS name, CID and claim type are required")
        ledger = self._require_ledger()

        with self._lock:
            if not self.owns_name(name, sender):
                raise NotOwner(f"{sender} does not own {name}", {"name": name})

            did = did_for_name(name)
            message_hash = append_digest(
                did, cid, claim_type, ledger.address, ledger.get_current_nonce(did)
            )
            self._emit_message(name, message_hash, sender)

        return message_hash

    def names_with_did(self, names: Sequence[str]) -> List[str]:
        """Filter `names` down to those holding a DID record."""
        return [name for name in names if self.has_did(name)]
