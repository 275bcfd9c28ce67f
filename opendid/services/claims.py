"""
OpenDID Claim Service
Issues claims (document -> encrypt -> IPFS -> signed ledger append) and
verifies them back from the ledger.
"""

import json
import logging
import re
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Union

from eth_account import Account

from opendid.errors import (
    AlreadyRegistered,
    ClaimVerificationError,
    InvalidFormat,
    NotOwner,
    NotRegistered,
    OpenDIDError,
    StorageError,
    UnknownClaimType,
)
from opendid.services.encryption import EncryptionService, compute_sha256, encryption_service
from opendid.services.gateway import DID_PREFIX, OpenDIDGateway, did_for_name
from opendid.services.registry import ClaimType, DIDClaimsRegistry
from opendid.services.signatures import sign_digest

logger = logging.getLogger(__name__)

ENS_NAME_PATTERN = re.compile(r"^[a-z0-9]([a-z0-9-]*[a-z0-9])?\.eth$")
CLAIM_TYPE_PATTERN = re.compile(r"^[a-z0-9-]+$")

REQUIRED_CLAIM_FIELDS = ("claimId", "did", "claimType", "issuer", "subject", "issuedAt", "data")

PemKey = Union[bytes, str]


def is_valid_ens_name(ens_name: str) -> bool:
    return bool(ens_name) and ENS_NAME_PATTERN.match(ens_name) is not None


def is_valid_claim_type(claim_type: str) -> bool:
    return bool(claim_type) and CLAIM_TYPE_PATTERN.match(claim_type) is not None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_time(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class IssuedClaim:
    """Result of a successful claim issuance."""
    ens_name: str
    did: str
    cid: str
    index: int
    claim_id: str


class ClaimService:
    """Claim issuance and verification over the gateway and the ledger."""

    def __init__(
        self,
        gateway: OpenDIDGateway,
        registry: DIDClaimsRegistry,
        ipfs,
        encryption: EncryptionService = None
    ):
        self.gateway = gateway
        self.registry = registry
        self.ipfs = ipfs
        self.encryption = encryption or encryption_service

    # ============ Claim types ============

    def create_claim_type(self, claim_type: str, description: str, issuer: str) -> ClaimType:
        if not is_valid_claim_type(claim_type):
            raise InvalidFormat(
                "Invalid claim type format. Use lowercase letters, numbers, and hyphens only.",
                {"claim_type": claim_type}
            )
        return self.registry.create_claim_type(claim_type, description, issuer)

    # ============ Registration ============

    def register_on_ledger(self, ens_name: str, private_key: str) -> int:
        """
        Register did:opendid:<ens_name> on the ledger, signing with the
        ENS owner's key.

        Returns:
            The DID's nonce after registration
        """
        if not is_valid_ens_name(ens_name):
            raise InvalidFormat("Invalid ENS name format", {"ens_name": ens_name})

        did = did_for_name(ens_name)
        if self.registry.is_did_registered(did):
            raise AlreadyRegistered(f"DID already registered: {did}", {"did": did})

        owner = Account.from_key(private_key).address
        message_hash = self.gateway.generate_registration_message(ens_name, owner)
        signature = sign_digest(message_hash, private_key)
        return self.registry.register_did(did, owner, signature)

    # ============ Issuance ============

    def build_claim_document(
        self,
        did: str,
        claim_type: str,
        data: Dict[str, Any],
        issuer: str,
        expiration_date: Optional[datetime] = None
    ) -> Dict[str, Any]:
        """Create the claim document stored off-chain."""
        issued_at = _utcnow()
        document = {
            "claimId": f"claim_{int(issued_at.timestamp() * 1000)}_{uuid.uuid4().hex[:12]}",
            "did": did,
            "claimType": claim_type,
            "issuer": issuer,
            "subject": self.registry.get_did_owner(did),
            "issuedAt": issued_at.isoformat(),
            "data": data
        }
        if expiration_date is not None:
            document["expirationDate"] = expiration_date.isoformat()
        document["dataHash"] = compute_sha256(json.dumps(data, sort_keys=True, default=str))
        return document

    def issue_claim(
        self,
        ens_name: str,
        claim_type: str,
        data: Dict[str, Any],
        private_key: str,
        recipient_public_pem: Optional[PemKey] = None,
        expiration_date: Optional[datetime] = None
    ) -> IssuedClaim:
        """
        Issue a claim for an ENS name the signer owns.

        Args:
            ens_name: Subject ENS name (e.g. alice.eth)
            claim_type: Existing claim type key
            data: Claim payload
            private_key: Key of the ENS owner, used to sign the append
            recipient_public_pem: When given, the document is encrypted
                for this P-256 key before upload
            expiration_date: Optional expiry carried in the document
        """
        if not is_valid_ens_name(ens_name):
            raise InvalidFormat("Invalid ENS name format", {"ens_name": ens_name})
        if not is_valid_claim_type(claim_type):
            raise InvalidFormat("Invalid claim type format", {"claim_type": claim_type})
        if not self.registry.is_claim_type_exists(claim_type):
            raise UnknownClaimType(f"Claim type does not exist: {claim_type}")

        signer = Account.from_key(private_key).address
        if not self.gateway.owns_name(ens_name, signer):
            raise NotOwner(f"{signer} does not own {ens_name}", {"ens_name": ens_name})
        if not self.gateway.has_did(ens_name):
            raise NotRegistered(f"DID not claimed for this ENS name: {ens_name}")

        did = did_for_name(ens_name)
        if not self.registry.is_did_registered(did):
            raise NotRegistered(f"DID not registered on the ledger: {did}", {"did": did})

        document = self.build_claim_document(did, claim_type, data, signer, expiration_date)
        if recipient_public_pem is not None:
            payload = self.encryption.encrypt_document(document, recipient_public_pem)
        else:
            payload = json.dumps(document, sort_keys=True)

        upload = self.ipfs.upload(payload)
        if not upload.success:
            raise StorageError(f"Claim upload failed: {upload.error}", {"did": did})

        message_hash = self.gateway.generate_claim_message(ens_name, upload.cid, claim_type, signer)
        signature = sign_digest(message_hash, private_key)
        index = self.registry.append_claim(did, upload.cid, claim_type, signature, sender=signer)

        logger.info(f"[+] Issued {claim_type} claim for {did}: {upload.cid}")
        return IssuedClaim(
            ens_name=ens_name,
            did=did,
            cid=upload.cid,
            index=index,
            claim_id=document["claimId"]
        )

    def issue_bulk_claims(
        self,
        ens_names: Sequence[str],
        claim_type: str,
        data: Dict[str, Any],
        private_key: str,
        recipient_public_pem: Optional[PemKey] = None
    ) -> List[IssuedClaim]:
        """Issue the same claim to several names; returns only the successes."""
        issued = []
        for ens_name in ens_names:
            try:
                issued.append(self.issue_claim(
                    ens_name, claim_type, data, private_key, recipient_public_pem
                ))
            except OpenDIDError as e:
                logger.warning(f"[!] Bulk issuance skipped {ens_name}: {e.code} {e.message}")
        return issued

    # ============ Verification ============

    def _load_document(self, cid: str, recipient_private_pem: Optional[PemKey]) -> Dict[str, Any]:
        content, error = self.ipfs.fetch(cid)
        if error:
            raise StorageError(error, {"cid": cid})

        try:
            text = content.decode("utf-8") if isinstance(content, bytes) else content
        except UnicodeDecodeError as e:
            raise ClaimVerificationError(f"Claim {cid} is not UTF-8 text: {e}")

        if recipient_private_pem is not None:
            return self.encryption.decrypt_document(text.strip(), recipient_private_pem)
        try:
            return json.loads(text)
        except ValueError as e:
            raise ClaimVerificationError(f"Claim {cid} is not a JSON document: {e}")

    @staticmethod
    def validate_claim_structure(claim: Any) -> None:
        if not isinstance(claim, dict):
            raise ClaimVerificationError("Invalid claim: not an object")

        for field in REQUIRED_CLAIM_FIELDS:
            if field not in claim:
                raise ClaimVerificationError(f"Invalid claim: missing required field '{field}'")

        if not str(claim["did"]).startswith(DID_PREFIX):
            raise ClaimVerificationError(f'Invalid claim: DID must start with "{DID_PREFIX}"')

        if not isinstance(claim["issuedAt"], str):
            raise ClaimVerificationError("Invalid claim: issuedAt must be an ISO-8601 string")

        if claim.get("expirationDate") is not None and not isinstance(claim["expirationDate"], str):
            raise ClaimVerificationError("Invalid claim: expirationDate must be an ISO-8601 string")

    @staticmethod
    def validate_claim_integrity(claim: Dict[str, Any], expected_did: str, expected_claim_type: str) -> None:
        if claim["did"] != expected_did:
            raise ClaimVerificationError(
                f"Claim DID mismatch. Expected: {expected_did}, Got: {claim['did']}"
            )
        if claim["claimType"] != expected_claim_type:
            raise ClaimVerificationError(
                f"Claim type mismatch. Expected: {expected_claim_type}, Got: {claim['claimType']}"
            )

        now = _utcnow()
        try:
            issued_at = _parse_time(claim["issuedAt"])
            expires = _parse_time(claim["expirationDate"]) if claim.get("expirationDate") else None
        except ValueError as e:
            raise ClaimVerificationError(f"Invalid claim date: {e}")

        if issued_at > now:
            raise ClaimVerificationError("Claim issued date is in the future")
        if expires is not None and expires < now:
            raise ClaimVerificationError("Claim has expired")

    def _retrieve_and_verify(
        self,
        cid: str,
        did: str,
        claim_type: str,
        recipient_private_pem: Optional[PemKey]
    ) -> Dict[str, Any]:
        claim = self._load_document(cid, recipient_private_pem)
        self.validate_claim_structure(claim)
        self.validate_claim_integrity(claim, did, claim_type)
        return dict(claim, cid=cid)

    def verify_claim(
        self,
        did: str,
        claim_type: str,
        index: int,
        recipient_private_pem: Optional[PemKey] = None
    ) -> Dict[str, Any]:
        """Fetch the `index`-th claim of a type and validate it."""
        cid = self.registry.get_claim_by_type(did, claim_type, index)
        return self._retrieve_and_verify(cid, did, claim_type, recipient_private_pem)

    def get_latest_claim_by_type(
        self,
        did: str,
        claim_type: str,
        recipient_private_pem: Optional[PemKey] = None
    ) -> Optional[Dict[str, Any]]:
        cid = self.registry.get_latest_cid_by_type(did, claim_type)
        if not cid:
            return None
        return self._retrieve_and_verify(cid, did, claim_type, recipient_private_pem)

    def get_all_claims_by_type(
        self,
        did: str,
        claim_type: str,
        recipient_private_pem: Optional[PemKey] = None
    ) -> List[Dict[str, Any]]:
        """All claims of a type that verify; failing ones are logged and left out."""
        verified = []
        for cid in self.registry.get_all_claims_by_type(did, claim_type):
            try:
                verified.append(self._retrieve_and_verify(cid, did, claim_type, recipient_private_pem))
            except OpenDIDError as e:
                logger.warning(f"[!] Failed to retrieve and verify claim {cid}: {e.message}")
        return verified
