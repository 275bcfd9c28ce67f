"""
OpenDID Claims API
Claim issuance with the service wallet and verification of stored claims.

The service wallet (PRIVATE_KEY) acts as the ENS owner: it signs the ledger
registration and every claim append. Only plaintext claims can be verified
here; encrypted claims are decrypted by their recipient.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel

from opendid import services
from opendid.config import config


router = APIRouter()


class RegisterOnLedgerRequest(BaseModel):
    ens_name: str


class RegisterOnLedgerResponse(BaseModel):
    success: bool
    ens_name: str
    did: str
    nonce: int
    message: str


class IssueClaimRequest(BaseModel):
    """Claim issuance request; recipient_public_key is a P-256 PEM."""
    ens_name: str
    claim_type: str
    data: Dict[str, Any]
    recipient_public_key: Optional[str] = None
    expiration_date: Optional[datetime] = None


class IssueClaimResponse(BaseModel):
    success: bool
    ens_name: str
    did: str
    cid: str
    index: int
    claim_id: str
    gateway_url: str


class VerifiedClaimsResponse(BaseModel):
    did: str
    claim_type: str
    claims: List[Dict[str, Any]]


def _wallet_key() -> str:
    if not config.is_wallet_configured():
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service wallet not configured"
        )
    return config.PRIVATE_KEY


@router.post("/claims/register", response_model=RegisterOnLedgerResponse)
async def register_on_ledger(request: RegisterOnLedgerRequest):
    """Register did:opendid:<ens_name> on the ledger, signed by the service wallet."""
    claim_service = services.claim_service
    nonce = claim_service.register_on_ledger(request.ens_name, _wallet_key())
    return RegisterOnLedgerResponse(
        success=True,
        ens_name=request.ens_name,
        did=f"did:opendid:{request.ens_name}",
        nonce=nonce,
        message="Registration successful"
    )


@router.post("/claims/issue", response_model=IssueClaimResponse, status_code=status.HTTP_201_CREATED)
async def issue_claim(request: IssueClaimRequest):
    """
    Issue a claim: build the document, optionally encrypt it, store it on
    IPFS and append its CID to the ledger.
    """
    issued = services.claim_service.issue_claim(
        request.ens_name,
        request.claim_type,
        request.data,
        _wallet_key(),
        recipient_public_pem=request.recipient_public_key,
        expiration_date=request.expiration_date
    )
    return IssueClaimResponse(
        success=True,
        ens_name=issued.ens_name,
        did=issued.did,
        cid=issued.cid,
        index=issued.index,
        claim_id=issued.claim_id,
        gateway_url=services.ipfs_service.get_gateway_url(issued.cid)
    )


@router.get("/claims/{did}/{claim_type}", response_model=VerifiedClaimsResponse)
async def get_verified_claims(did: str, claim_type: str):
    """All claims of a type that pass verification; failing ones are left out."""
    claims = services.claim_service.get_all_claims_by_type(did, claim_type)
    return VerifiedClaimsResponse(did=did, claim_type=claim_type, claims=claims)


@router.get("/claims/{did}/{claim_type}/latest")
async def get_latest_claim(did: str, claim_type: str):
    claim = services.claim_service.get_latest_claim_by_type(did, claim_type)
    if claim is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No {claim_type} claims for {did}"
        )
    return claim


@router.get("/claims/{did}/{claim_type}/{index}")
async def verify_claim(did: str, claim_type: str, index: int):
    """Fetch and verify one claim of a type by its per-type index."""
    return services.claim_service.verify_claim(did, claim_type, index)
