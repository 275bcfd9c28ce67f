"""
OpenDID ENS Gateway API
DID text-record management for ENS names and signing-message generation.

Record writes carry the ENS owner's signature over the record message
(`GET /ens/{name}/messages/record`), which binds the action, the name,
the CID, the gateway address and the name's nonce. Ledger message endpoints
take the owner's address as `sender`; they only compute digests.
"""

from typing import List, Optional

from fastapi import APIRouter, HTTPException, Query, status
from pydantic import BaseModel

from opendid import services
from opendid.services.gateway import did_for_name
from opendid.services.signatures import CLAIM_DID_TAG, REVOKE_DID_TAG, UPDATE_DID_TAG


router = APIRouter()

RECORD_ACTIONS = {
    "claim": CLAIM_DID_TAG,
    "update": UPDATE_DID_TAG,
    "revoke": REVOKE_DID_TAG
}


class ENSNameResponse(BaseModel):
    name: str
    node: str
    owner: str
    resolver: Optional[str] = None
    did: str
    has_did: bool


class ClaimDIDRequest(BaseModel):
    """Claim or update request; signature is 0x-prefixed hex by the ENS owner."""
    name: str
    cid: str
    signature: str = ""


class RevokeDIDRequest(BaseModel):
    name: str
    signature: str = ""


class BatchClaimRequest(BaseModel):
    """One owner signature per name, each over its own claim record message."""
    names: List[str]
    cids: List[str]
    signatures: List[str]


class BatchClaimResponse(BaseModel):
    """Names holding a DID record after the batch; no per-item status."""
    submitted: int
    with_did: List[str]


class DIDRecordResponse(BaseModel):
    success: bool
    name: str
    did: str
    message: str


class RegistrationMessageRequest(BaseModel):
    sender: str


class ClaimMessageRequest(BaseModel):
    sender: str
    cid: str
    claim_type: str


class RecordMessageResponse(BaseModel):
    """Digest the ENS owner signs for a record write."""
    name: str
    action: str
    cid: str
    nonce: int
    gateway_address: str
    message_hash: str


class MessageResponse(BaseModel):
    """Digest to sign as a personal message."""
    name: str
    did: str
    nonce: int
    ledger_address: str
    message_hash: str


@router.get("/ens/{name}", response_model=ENSNameResponse)
async def get_ens_name(name: str):
    info = services.gateway.get_ens_name_info(name)
    return ENSNameResponse(
        name=info.name,
        node="0x" + info.node.hex(),
        owner=info.owner,
        resolver=info.resolver,
        did=services.gateway.get_did(name),
        has_did=info.has_did
    )


@router.post("/ens/claim", response_model=DIDRecordResponse, status_code=status.HTTP_201_CREATED)
async def claim_did(request: ClaimDIDRequest):
    record = services.gateway.claim_did_signed(request.name, request.cid, request.signature)
    return DIDRecordResponse(success=True, name=request.name, did=record, message="DID claimed")


@router.post("/ens/update", response_model=DIDRecordResponse)
async def update_did(request: ClaimDIDRequest):
    record = services.gateway.update_did_signed(request.name, request.cid, request.signature)
    return DIDRecordResponse(success=True, name=request.name, did=record, message="DID updated")


@router.post("/ens/revoke", response_model=DIDRecordResponse)
async def revoke_did(request: RevokeDIDRequest):
    services.gateway.revoke_did_signed(request.name, request.signature)
    return DIDRecordResponse(success=True, name=request.name, did="", message="DID revoked")


@router.post("/ens/batch-claim", response_model=BatchClaimResponse)
async def batch_claim_did(request: BatchClaimRequest):
    """Claim several names; failing items are skipped."""
    if not request.names:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="At least one name is required"
        )
    services.gateway.batch_claim_did_signed(request.names, request.cids, request.signatures)
    return BatchClaimResponse(
        submitted=len(request.names),
        with_did=services.gateway.names_with_did(request.names)
    )


@router.post("/ens/{name}/messages/registration", response_model=MessageResponse)
async def registration_message(name: str, request: RegistrationMessageRequest):
    gateway = services.gateway
    message_hash = gateway.generate_registration_message(name, request.sender)
    did = did_for_name(name)
    return MessageResponse(
        name=name,
        did=did,
        nonce=gateway.ledger.get_current_nonce(did),
        ledger_address=gateway.ledger.address,
        message_hash="0x" + message_hash.hex()
    )


@router.post("/ens/{name}/messages/claim", response_model=MessageResponse)
async def claim_message(name: str, request: ClaimMessageRequest):
    gateway = services.gateway
    message_hash = gateway.generate_claim_message(name, request.cid, request.claim_type, request.sender)
    did = did_for_name(name)
    return MessageResponse(
        name=name,
        did=did,
        nonce=gateway.ledger.get_current_nonce(did),
        ledger_address=gateway.ledger.address,
        message_hash="0x" + message_hash.hex()
    )


@router.get("/ens/{name}/messages/record", response_model=RecordMessageResponse)
async def record_message(name: str, action: str = Query(...), cid: str = Query("")):
    """
    Digest to sign for a claim, update or revoke of the name's DID record.

    The CID is ignored for revocation.
    """
    tag = RECORD_ACTIONS.get(action)
    if tag is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unknown action: {action}. Expected one of {sorted(RECORD_ACTIONS)}"
        )
    if action == "revoke":
        cid = ""

    gateway = services.gateway
    return RecordMessageResponse(
        name=name,
        action=action,
        cid=cid,
        nonce=gateway.get_name_nonce(name),
        gateway_address=gateway.address,
        message_hash="0x" + gateway.get_record_message(tag, name, cid).hex()
    )
