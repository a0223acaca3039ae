"""
Admin API Routes

Moderation console: every item, claim and account, status changes,
force-resolving or deleting items, reading chat logs and toggling
maintenance mode.

All routes require an account whose stored role is admin.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from ..observability import get_logger
from ..schemas import Account, AccountStatus, MaintenanceUpdate
from ..web.deps import get_services, require_admin
from ..web.shared_store import Services


router = APIRouter(prefix="/api/admin", tags=["Admin"])
logger = get_logger("finditnow.api.admin")


class StatusChange(BaseModel):
    status: AccountStatus


@router.get("/stats")
def stats(
    admin: Account = Depends(require_admin),
    services: Services = Depends(get_services),
):
    return services.workflow.dashboard_stats()


@router.get("/items")
def all_items(
    search: Optional[str] = Query(default=None, max_length=100),
    admin: Account = Depends(require_admin),
    services: Services = Depends(get_services),
):
    items = services.catalog.list_all(search)
    return {"items": [i.model_dump(mode="json") for i in items], "count": len(items)}


@router.delete("/items/{item_id}")
def delete_item(
    item_id: str,
    admin: Account = Depends(require_admin),
    services: Services = Depends(get_services),
):
    services.catalog.delete_item(admin, item_id)
    return {"success": True, "id": item_id}


@router.post("/items/{item_id}/resolve")
def resolve_item(
    item_id: str,
    admin: Account = Depends(require_admin),
    services: Services = Depends(get_services),
):
    item = services.workflow.admin_resolve_item(admin, item_id)
    return {"success": True, "item": item.model_dump(mode="json")}


@router.get("/claims")
def all_claims(
    search: Optional[str] = Query(default=None, max_length=100),
    admin: Account = Depends(require_admin),
    services: Services = Depends(get_services),
):
    claims = services.workflow.list_all_claims(search)
    names = services.workflow.item_names(claims)
    return {
        "claims": [
            {**c.model_dump(mode="json"), "item_name": names.get(c.item_id, "")}
            for c in claims
        ],
        "count": len(claims),
    }


@router.get("/claims/{claim_id}/messages")
def chat_log(
    claim_id: str,
    admin: Account = Depends(require_admin),
    services: Services = Depends(get_services),
):
    messages = services.chat.list_messages(claim_id, admin)
    return {"chat_id": claim_id, "messages": [m.model_dump(mode="json") for m in messages]}


@router.get("/accounts")
def all_accounts(
    search: Optional[str] = Query(default=None, max_length=100),
    admin: Account = Depends(require_admin),
    services: Services = Depends(get_services),
):
    accounts = services.identity.list_accounts(search)
    return {"accounts": [a.public() for a in accounts], "count": len(accounts)}


@router.put("/accounts/{account_id}/status")
def set_account_status(
    account_id: str,
    body: StatusChange,
    admin: Account = Depends(require_admin),
    services: Services = Depends(get_services),
):
    account = services.identity.set_status(admin, account_id, body.status)
    return {"success": True, "account": account.public()}


@router.get("/maintenance")
def get_maintenance(
    admin: Account = Depends(require_admin),
    services: Services = Depends(get_services),
):
    return services.maintenance.get().model_dump(exclude={"version"})


@router.put("/maintenance")
def set_maintenance(
    body: MaintenanceUpdate,
    admin: Account = Depends(require_admin),
    services: Services = Depends(get_services),
):
    config = services.maintenance.set(body.is_enabled, body.message)
    logger.warning("Maintenance toggled", enabled=config.is_enabled, admin_id=admin.id)
    return config.model_dump(exclude={"version"})
