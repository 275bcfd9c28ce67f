"""
OpenDID History API
Event timelines from the journal of emitted ledger and gateway events.
"""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel

from opendid import services
from opendid.database import get_events_by_did, get_events_by_ens_name


router = APIRouter()


class TimelineEvent(BaseModel):
    """Single journaled event."""
    event_type: str
    source: str
    timestamp: str
    payload: Dict[str, Any]


class DIDHistoryResponse(BaseModel):
    did: str
    registered: bool
    owner: Optional[str] = None
    nonce: int
    timeline: List[TimelineEvent]


class ENSHistoryResponse(BaseModel):
    name: str
    timeline: List[TimelineEvent]


def _timeline(rows: List[Dict[str, Any]]) -> List[TimelineEvent]:
    return [
        TimelineEvent(
            event_type=row["name"],
            source=row["source"],
            timestamp=str(row["created_at"]),
            payload=row["payload"]
        )
        for row in rows
    ]


@router.get("/dids/{did}/history", response_model=DIDHistoryResponse)
async def get_did_history(did: str):
    """
    Registration and claim events of a DID, oldest first.

    Args:
        did: Decentralized Identifier to query
    """
    registry = services.claims_registry
    if not registry.is_did_registered(did):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"DID not found: {did}"
        )

    return DIDHistoryResponse(
        did=did,
        registered=True,
        owner=registry.get_did_owner(did),
        nonce=registry.get_current_nonce(did),
        timeline=_timeline(get_events_by_did(did))
    )


@router.get("/ens/{name}/history", response_model=ENSHistoryResponse)
async def get_ens_history(name: str):
    """Claim, update and revoke events of an ENS name, oldest first."""
    return ENSHistoryResponse(name=name, timeline=_timeline(get_events_by_ens_name(name)))
