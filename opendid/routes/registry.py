"""
OpenDID Claims Ledger API
Claim types, DID registration and claim append/read endpoints.
"""

from typing import List, Optional

from fastapi import APIRouter, HTTPException, Query, status
from pydantic import BaseModel

from opendid import services
from opendid.services.registry import ClaimType


router = APIRouter()


class ClaimTypeRequest(BaseModel):
    """Claim type creation request."""
    claim_type: str
    description: str = ""
    issuer: str


class ClaimTypeResponse(BaseModel):
    """Claim type record."""
    claim_type: str
    issuer: str
    description: str
    exists: bool
    created_at: int


class RegisterDIDRequest(BaseModel):
    """DID registration request; signature is 0x-prefixed hex."""
    did: str
    owner: str
    signature: str


class RegisterDIDResponse(BaseModel):
    success: bool
    did: str
    did_hash: str
    nonce: int
    message: str


class AppendClaimRequest(BaseModel):
    """Claim append request; signature is 0x-prefixed hex."""
    cid: str
    claim_type: str
    signature: str
    sender: Optional[str] = None


class AppendClaimResponse(BaseModel):
    success: bool
    did: str
    index: int
    nonce: int
    message: str


class DIDStatusResponse(BaseModel):
    did: str
    did_hash: str
    registered: bool
    owner: str
    nonce: int
    claims_count: int
    latest_cid: str


class ClaimsResponse(BaseModel):
    did: str
    claim_type: Optional[str] = None
    count: int
    latest_cid: str
    claims: List[str]


class ClaimResponse(BaseModel):
    did: str
    claim_type: Optional[str] = None
    index: int
    cid: str


def _claim_type_response(record: ClaimType) -> ClaimTypeResponse:
    return ClaimTypeResponse(
        claim_type=record.claim_type,
        issuer=record.issuer,
        description=record.description,
        exists=record.exists,
        created_at=record.created_at
    )


def _check_range(start: Optional[int], end: Optional[int]) -> bool:
    """True when a range was requested; both bounds must come together."""
    if (start is None) != (end is None):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="start and end must be given together"
        )
    return start is not None


# ============ Claim types ============

@router.post("/claim-types", response_model=ClaimTypeResponse, status_code=status.HTTP_201_CREATED)
async def create_claim_type(request: ClaimTypeRequest):
    """Create a claim type; the key can never be taken again."""
    record = services.claims_registry.create_claim_type(
        request.claim_type, request.description, request.issuer
    )
    return _claim_type_response(record)


@router.get("/claim-types", response_model=List[ClaimTypeResponse])
async def list_claim_types():
    return [_claim_type_response(record) for record in services.claims_registry.list_claim_types()]


@router.get("/claim-types/{claim_type}", response_model=ClaimTypeResponse)
async def get_claim_type(claim_type: str):
    return _claim_type_response(services.claims_registry.get_claim_type(claim_type))


# ============ DIDs ============

@router.post("/dids/register", response_model=RegisterDIDResponse)
async def register_did(request: RegisterDIDRequest):
    """
    Register a DID for the address that signed the registration digest.

    The digest is keccak256("Register" ‖ did ‖ ledger ‖ nonce) signed as a
    personal message.
    """
    registry = services.claims_registry
    nonce = registry.register_did(request.did, request.owner, request.signature)
    return RegisterDIDResponse(
        success=True,
        did=request.did,
        did_hash="0x" + registry.did_hash(request.did).hex(),
        nonce=nonce,
        message="Registration successful"
    )


@router.get("/dids/{did}", response_model=DIDStatusResponse)
async def get_did_status(did: str):
    registry = services.claims_registry
    return DIDStatusResponse(
        did=did,
        did_hash="0x" + registry.did_hash(did).hex(),
        registered=registry.is_did_registered(did),
        owner=registry.get_did_owner(did),
        nonce=registry.get_current_nonce(did),
        claims_count=registry.get_claims_count(did),
        latest_cid=registry.get_latest_cid(did)
    )


# ============ Claims ============

@router.post("/dids/{did}/claims", response_model=AppendClaimResponse, status_code=status.HTTP_201_CREATED)
async def append_claim(did: str, request: AppendClaimRequest):
    """Append a claim signed by the DID owner at the current nonce."""
    registry = services.claims_registry
    index = registry.append_claim(
        did, request.cid, request.claim_type, request.signature, sender=request.sender
    )
    return AppendClaimResponse(
        success=True,
        did=did,
        index=index,
        nonce=registry.get_current_nonce(did),
        message="Claim appended"
    )


@router.get("/dids/{did}/claims", response_model=ClaimsResponse)
async def get_claims(did: str, start: Optional[int] = Query(None), end: Optional[int] = Query(None)):
    """All claims of a DID, or the inclusive [start, end] slice."""
    registry = services.claims_registry
    if _check_range(start, end):
        claims = registry.get_claims_range(did, start, end)
    else:
        claims = registry.get_all_claims(did)
    return ClaimsResponse(
        did=did,
        count=registry.get_claims_count(did),
        latest_cid=registry.get_latest_cid(did),
        claims=claims
    )


@router.get("/dids/{did}/claims/types/{claim_type}", response_model=ClaimsResponse)
async def get_claims_by_type(
    did: str,
    claim_type: str,
    start: Optional[int] = Query(None),
    end: Optional[int] = Query(None)
):
    registry = services.claims_registry
    if _check_range(start, end):
        claims = registry.get_claims_range_by_type(did, claim_type, start, end)
    else:
        claims = registry.get_all_claims_by_type(did, claim_type)
    return ClaimsResponse(
        did=did,
        claim_type=claim_type,
        count=registry.get_claims_count_by_type(did, claim_type),
        latest_cid=registry.get_latest_cid_by_type(did, claim_type),
        claims=claims
    )


@router.get("/dids/{did}/claims/types/{claim_type}/{index}", response_model=ClaimResponse)
async def get_claim_by_type(did: str, claim_type: str, index: int):
    cid = services.claims_registry.get_claim_by_type(did, claim_type, index)
    return ClaimResponse(did=did, claim_type=claim_type, index=index, cid=cid)


@router.get("/dids/{did}/claims/{index}", response_model=ClaimResponse)
async def get_claim(did: str, index: int):
    cid = services.claims_registry.get_claim(did, index)
    return ClaimResponse(did=did, index=index, cid=cid)
