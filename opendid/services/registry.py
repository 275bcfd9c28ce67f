"""
OpenDID Claims Registry
Claim types, signature-gated DID registration and the append-only claims
ledger, with per-DID nonces against signature replay.

All state of one registry instance forms a single consistency domain:
every write holds the instance lock for its whole duration and runs all
checks before its first mutation, so a rejected call leaves no trace.
"""

import logging
import threading
import time
from dataclasses import dataclass, replace
from typing import Callable, Dict, List, Optional, Tuple

from eth_account import Account
from web3 import Web3

from opendid.errors import (
    AlreadyRegistered,
    ClaimTypeAlreadyExists,
    EmptyCID,
    EmptyClaimType,
    EmptyDID,
    EmptyKey,
    InvalidIndex,
    InvalidRange,
    NotFound,
    NotRegistered,
    Unauthorized,
    UnknownClaimType,
)
from opendid.services.events import ClaimAppended, ClaimTypeCreated, DIDRegistered, EventLog
from opendid.services.signatures import (
    ZERO_ADDRESS,
    append_digest,
    recover_signer,
    registration_digest,
    same_address,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ClaimType:
    """Issuer-tagged claim category."""
    claim_type: str
    issuer: str
    description: str
    exists: bool
    created_at: int


@dataclass(frozen=True)
class DIDRecord:
    """Registration state of one DID."""
    eth_owner: str = ZERO_ADDRESS
    is_registered: bool = False
    nonce: int = 0


def did_hash(did: str) -> bytes:
    """keccak256 of the DID string; the ledger's primary key."""
    return bytes(Web3.keccak(text=did))


class DIDClaimsRegistry:
    """
    Claims ledger keyed by DID hash.

    Args:
        address: ledger address bound into every signed digest
        enforce_issuer: also require the submitter of a claim to be the
            issuer of its claim type
        clock: source of claim type creation timestamps
    """

    def __init__(
        self,
        address: Optional[str] = None,
        enforce_issuer: bool = False,
        clock: Callable[[], float] = time.time
    ):
        self.address = Web3.to_checksum_address(address) if address else Account.create().address
        self.enforce_issuer = enforce_issuer
        self._clock = clock
        self._lock = threading.RLock()
        self.events = EventLog("DIDClaimsRegistry")

        self._claim_types: Dict[str, ClaimType] = {}
        self._dids: Dict[bytes, DIDRecord] = {}

        # Global log per DID
        self._claims: Dict[bytes, List[str]] = {}
        self._latest: Dict[bytes, str] = {}

        # Per (DID, claim type) log, independent of the global one
        self._claims_by_type: Dict[Tuple[bytes, str], List[str]] = {}
        self._latest_by_type: Dict[Tuple[bytes, str], str] = {}
        self._count_by_type: Dict[Tuple[bytes, str], int] = {}

    @staticmethod
    def did_hash(did: str) -> bytes:
        return did_hash(did)

    # ============ Claim types ============

    def create_claim_type(self, claim_type: str, description: str, issuer: str) -> ClaimType:
        """
        Register a new claim category owned by `issuer`.

        First writer wins; an existing key can never be overwritten.
        """
        if not claim_type:
            raise EmptyKey("Claim type key is required")

        with self._lock:
            if claim_type in self._claim_types:
                raise ClaimTypeAlreadyExists(
                    f"Claim type already exists: {claim_type}",
                    {"claim_type": claim_type}
                )

            record = ClaimType(
                claim_type=claim_type,
                issuer=issuer,
                description=description,
                exists=True,
                created_at=int(self._clock())
            )
            self._claim_types[claim_type] = record
            self.events.emit(ClaimTypeCreated(
                claim_type=claim_type,
                issuer=issuer,
                description=description
            ))

        logger.info(f"[+] Claim type created: {claim_type} (issuer {issuer})")
        return record

    def is_claim_type_exists(self, claim_type: str) -> bool:
        return claim_type in self._claim_types

    def get_claim_type(self, claim_type: str) -> ClaimType:
        record = self._claim_types.get(claim_type)
        if record is None:
            raise NotFound(f"Claim type not found: {claim_type}", {"claim_type": claim_type})
        return record

    def list_claim_types(self) -> List[ClaimType]:
        return list(self._claim_types.values())

    # ============ DID registration ============

    def _record(self, key: bytes) -> DIDRecord:
        return self._dids.get(key, DIDRecord())

    def register_did(self, did: str, expected_owner: str, signature) -> int:
        """
        Bind `did` to `expected_owner`.

        `signature` must be the owner's personal-message signature over
        registration_digest(did, self.address, nonce).

        Returns:
            The DID's nonce after registration
        """
        if not did:
            raise EmptyDID("DID is required")

        with self._lock:
            key = did_hash(did)
            record = self._record(key)
            if record.is_registered:
                raise AlreadyRegistered(f"DID already registered: {did}", {"did": did})

            digest = registration_digest(did, self.address, record.nonce)
            signer = recover_signer(digest, signature)
            if signer == ZERO_ADDRESS or not same_address(signer, expected_owner):
                raise Unauthorized("Invalid registration signature", {"did": did})

            record = DIDRecord(eth_owner=signer, is_registered=True, nonce=record.nonce + 1)
            self._dids[key] = record
            self.events.emit(DIDRegistered(did_hash=key, did=did, eth_owner=signer))

        logger.info(f"[+] DID registered: {did} -> {signer}")
        return record.nonce

    def is_did_registered(self, did: str) -> bool:
        return self._record(did_hash(did)).is_registered

    def get_current_nonce(self, did: str) -> int:
        return self._record(did_hash(did)).nonce

    def get_did_owner(self, did: str) -> str:
        return self._record(did_hash(did)).eth_owner

    # ============ Claims ============

    def append_claim(
        self,
        did: str,
        cid: str,
        claim_type: str,
        signature,
        sender: Optional[str] = None
    ) -> int:
        """
        Append `cid` to the DID's global log and to its `claim_type` log.

        `signature` must be the DID owner's signature over
        append_digest(did, cid, claim_type, self.address, nonce).

        Args:
            sender: submitting address; defaults to the DID owner

        Returns:
            Index of the claim in the DID's global log
        """
        if not did:
            raise EmptyDID("DID is required")
        if not cid:
            raise EmptyCID("CID is required")
        if not claim_type:
            raise EmptyClaimType("Claim type is required")

        with self._lock:
            key = did_hash(did)
            record = self._record(key)
            if not record.is_registered:
                raise NotRegistered(f"DID not registered: {did}", {"did": did})

            type_record = self._claim_types.get(claim_type)
            if type_record is None:
                raise UnknownClaimType(f"Unknown claim type: {claim_type}", {"claim_type": claim_type})

            digest = append_digest(did, cid, claim_type, self.address, record.nonce)
            if not same_address(recover_signer(digest, signature), record.eth_owner):
                raise Unauthorized("Invalid claim signature", {"did": did})

            submitter = sender or record.eth_owner
            if self.enforce_issuer and not same_address(submitter, type_record.issuer):
                raise Unauthorized(
                    f"Only the issuer of {claim_type} may submit its claims",
                    {"claim_type": claim_type, "submitter": submitter}
                )

            claims = self._claims.setdefault(key, [])
            claims.append(cid)
            index = len(claims) - 1
            self._latest[key] = cid

            type_key = (key, claim_type)
            self._claims_by_type.setdefault(type_key, []).append(cid)
            self._latest_by_type[type_key] = cid
            self._count_by_type[type_key] = self._count_by_type.get(type_key, 0) + 1

            self._dids[key] = replace(record, nonce=record.nonce + 1)
            self.events.emit(ClaimAppended(
                did_hash=key,
                did=did,
                index=index,
                cid=cid,
                claim_type=claim_type,
                submitter=submitter
            ))

        logger.info(f"[+] Claim appended: {did} #{index} {claim_type} {cid}")
        return index

    # ============ General claim queries ============

    def get_latest_cid(self, did: str) -> str:
        return self._latest.get(did_hash(did), "")

    def get_claims_count(self, did: str) -> int:
        return len(self._claims.get(did_hash(did), []))

    def get_claim(self, did: str, index: int) -> str:
        claims = self._claims.get(did_hash(did), [])
        if index < 0 or index >= len(claims):
            raise InvalidIndex(f"Claim index out of bounds: {index}", {"did": did, "index": index})
        return claims[index]

    def get_all_claims(self, did: str) -> List[str]:
        return list(self._claims.get(did_hash(did), []))

    def get_claims_range(self, did: str, start: int, end: int) -> List[str]:
        return _slice(self._claims.get(did_hash(did), []), start, end)

    # ============ Claim type specific queries ============

    def get_latest_cid_by_type(self, did: str, claim_type: str) -> str:
        return self._latest_by_type.get((did_hash(did), claim_type), "")

    def get_claims_count_by_type(self, did: str, claim_type: str) -> int:
        return self._count_by_type.get((did_hash(did), claim_type), 0)

    def get_claim_by_type(self, did: str, claim_type: str, index: int) -> str:
        claims = self._claims_by_type.get((did_hash(did), claim_type), [])
        if index < 0 or index >= len(claims):
            raise InvalidIndex(
                f"Claim index out of bounds: {index}",
                {"did": did, "claim_type": claim_type, "index": index}
            )
        return claims[index]

    def get_all_claims_by_type(self, did: str, claim_type: str) -> List[str]:
        return list(self._claims_by_type.get((did_hash(did), claim_type), []))

    def get_claims_range_by_type(self, did: str, claim_type: str, start: int, end: int) -> List[str]:
        return _slice(self._claims_by_type.get((did_hash(did), claim_type), []), start, end)

    def has_claims_of_type(self, did: str, claim_type: str) -> bool:
        return self.get_claims_count_by_type(did, claim_type) > 0


def _slice(claims: List[str], start: int, end: int) -> List[str]:
    """Copy of claims[start..end], both ends inclusive."""
    if start < 0 or start > end or end >= len(claims):
        raise InvalidRange(
            f"Invalid range [{start}, {end}] for {len(claims)} claims",
            {"start": start, "end": end, "length": len(claims)}
        )
    return claims[start:end + 1]
