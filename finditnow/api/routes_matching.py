"""
Matching API Routes

Free-text "I lost something like this" search against open found items.
"""

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from ..schemas import Account
from ..web.deps import get_current_account, get_services
from ..web.shared_store import Services


router = APIRouter(prefix="/api/matching", tags=["Matching"])


class MatchRequest(BaseModel):
    description: str = Field(..., min_length=3, max_length=500)
    location: str = Field(default="", max_length=100)


class MatchResult(BaseModel):
    item_id: str
    found_item_description: str
    location_found: str
    match_score: float = Field(..., ge=0, le=1)


class MatchResponse(BaseModel):
    enabled: bool
    matches: list[MatchResult]


@router.post("/match-items", response_model=MatchResponse)
def match_items(
    body: MatchRequest,
    account: Account = Depends(get_current_account),
    services: Services = Depends(get_services),
):
    results = services.matching.match_items(body.description, body.location)
    return MatchResponse(
        enabled=services.matching.enabled,
        matches=[MatchResult(**r) for r in results],
    )
