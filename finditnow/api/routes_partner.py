"""
Partner Portal Routes

Airports, hotels and other organizations that hand in many found items get
a dashboard and a queue of enquiries still awaiting a decision.
"""

from fastapi import APIRouter, Depends

from ..schemas import Account
from ..web.deps import get_services, require_partner
from ..web.shared_store import Services


router = APIRouter(prefix="/api/partner", tags=["Partner"])


@router.get("/dashboard")
def dashboard(
    partner: Account = Depends(require_partner),
    services: Services = Depends(get_services),
):
    return {
        "partner": partner.public(),
        "stats": services.workflow.owner_stats(partner),
    }


@router.get("/enquiries")
def open_enquiries(
    partner: Account = Depends(require_partner),
    services: Services = Depends(get_services),
):
    claims = services.workflow.list_open_enquiries(partner)
    names = services.workflow.item_names(claims)
    return {
        "claims": [
            {**c.model_dump(mode="json"), "item_name": names.get(c.item_id, "")}
            for c in claims
        ],
        "count": len(claims),
    }
