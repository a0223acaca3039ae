"""
Claim API Routes

Submitting claims, the owner's accept/reject/resolve decisions, the
claimant's confirmation for partner hand-overs, feedback and the derived
notification feed.

Every transition is checked server-side by ClaimWorkflow; these handlers
only translate HTTP to service calls.
"""

from fastapi import APIRouter, Depends, Query

from ..schemas import Account, Claim, ClaimForm, FeedbackForm
from ..web.deps import get_current_account, get_services
from ..web.shared_store import Services


router = APIRouter(tags=["Claims"])


def _claims_with_names(services: Services, claims: list[Claim]) -> list[dict]:
    names = services.workflow.item_names(claims)
    return [
        {**c.model_dump(mode="json"), "item_name": names.get(c.item_id, "")}
        for c in claims
    ]


@router.post("/api/items/{item_id}/claims", status_code=201)
def submit_claim(
    item_id: str,
    form: ClaimForm,
    account: Account = Depends(get_current_account),
    services: Services = Depends(get_services),
):
    claim = services.workflow.submit_claim(item_id, account, form)
    return {"success": True, "claim": claim.model_dump(mode="json")}


@router.get("/api/claims/mine")
def my_claims(
    account: Account = Depends(get_current_account),
    services: Services = Depends(get_services),
):
    """Claims I submitted, newest first."""
    claims = services.workflow.list_my_claims(account)
    return {"claims": _claims_with_names(services, claims), "count": len(claims)}


@router.get("/api/claims/enquiries")
def enquiries(
    account: Account = Depends(get_current_account),
    services: Services = Depends(get_services),
):
    """Claims filed on my items, newest first."""
    claims = services.workflow.list_enquiries(account)
    return {"claims": _claims_with_names(services, claims), "count": len(claims)}


@router.get("/api/claims/{claim_id}")
def get_claim(
    claim_id: str,
    account: Account = Depends(get_current_account),
    services: Services = Depends(get_services),
):
    claim = services.workflow.get_claim(claim_id, account)
    return _claims_with_names(services, [claim])[0]


@router.post("/api/claims/{claim_id}/accept")
def accept_claim(
    claim_id: str,
    account: Account = Depends(get_current_account),
    services: Services = Depends(get_services),
):
    claim = services.workflow.accept_claim(claim_id, account)
    return {"success": True, "claim": claim.model_dump(mode="json")}


@router.post("/api/claims/{claim_id}/reject")
def reject_claim(
    claim_id: str,
    account: Account = Depends(get_current_account),
    services: Services = Depends(get_services),
):
    claim = services.workflow.reject_claim(claim_id, account)
    return {"success": True, "claim": claim.model_dump(mode="json")}


@router.post("/api/claims/{claim_id}/resolve")
def resolve_claim(
    claim_id: str,
    account: Account = Depends(get_current_account),
    services: Services = Depends(get_services),
):
    claim = services.workflow.resolve_claim(claim_id, account)
    return {"success": True, "claim": claim.model_dump(mode="json")}


@router.post("/api/claims/{claim_id}/confirm")
def confirm_resolution(
    claim_id: str,
    account: Account = Depends(get_current_account),
    services: Services = Depends(get_services),
):
    """Claimant confirms receipt after a partner hand-over."""
    claim = services.workflow.confirm_resolution(claim_id, account)
    return {"success": True, "claim": claim.model_dump(mode="json")}


@router.post("/api/claims/{claim_id}/feedback", status_code=201)
def submit_feedback(
    claim_id: str,
    form: FeedbackForm,
    account: Account = Depends(get_current_account),
    services: Services = Depends(get_services),
):
    feedback = services.feedback.submit_feedback(claim_id, account, form)
    return {"success": True, "feedback": feedback.model_dump(mode="json")}


@router.get("/api/feedback/recent")
def recent_feedback(
    limit: int = Query(default=3, ge=1, le=20),
    services: Services = Depends(get_services),
):
    entries = services.feedback.recent_feedback(limit)
    return {"feedback": [f.model_dump(mode="json") for f in entries]}


@router.get("/api/notifications")
def notifications(
    account: Account = Depends(get_current_account),
    services: Services = Depends(get_services),
):
    entries = services.workflow.notifications(account)
    return {
        "notifications": [{**e, "at": e["at"].isoformat()} for e in entries],
        "count": len(entries),
    }


@router.get("/api/notifications/count")
def notification_count(
    account: Account = Depends(get_current_account),
    services: Services = Depends(get_services),
):
    return {"count": services.workflow.notification_count(account)}
