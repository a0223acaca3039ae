"""
Item API Routes

Public browsing of open items plus the owner's report/edit/delete flow.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Response

from ..core import PermissionDeniedError, ValidationError
from ..observability import get_logger
from ..schemas import Account, Item, ItemReport, ItemType, ItemUpdate
from ..web.deps import get_current_account, get_services
from ..web.shared_store import Services


router = APIRouter(prefix="/api/items", tags=["Items"])
logger = get_logger("finditnow.api.items")

# Listings change often; let shared caches keep them briefly
CACHE_CONTROL_LISTING = "public, max-age=30"


def _item_dict(item: Item) -> dict:
    return item.model_dump(mode="json")


@router.get("")
def browse_items(
    response: Response,
    search: Optional[str] = Query(default=None, max_length=100),
    category: Optional[str] = Query(default=None),
    type: Optional[ItemType] = Query(default=None),
    services: Services = Depends(get_services),
):
    """Open items, newest first."""
    items = services.catalog.browse(search=search, category=category, item_type=type)
    response.headers["Cache-Control"] = CACHE_CONTROL_LISTING
    return {"items": [_item_dict(i) for i in items], "count": len(items)}


@router.get("/categories")
def list_categories(services: Services = Depends(get_services)):
    return {"categories": services.catalog.categories()}


@router.get("/mine")
def my_items(
    account: Account = Depends(get_current_account),
    services: Services = Depends(get_services),
):
    items = services.catalog.list_for_owner(account.id)
    return {"items": [_item_dict(i) for i in items], "count": len(items)}


@router.post("", status_code=201)
def report_item(
    report: ItemReport,
    account: Account = Depends(get_current_account),
    services: Services = Depends(get_services),
):
    item = services.catalog.report_item(account, report)
    return {"success": True, "item": _item_dict(item)}


@router.get("/{item_id}")
def get_item(item_id: str, services: Services = Depends(get_services)):
    return _item_dict(services.catalog.get_item(item_id))


@router.patch("/{item_id}")
def update_item(
    item_id: str,
    changes: ItemUpdate,
    account: Account = Depends(get_current_account),
    services: Services = Depends(get_services),
):
    item = services.catalog.update_item(account, item_id, changes)
    return {"success": True, "item": _item_dict(item)}


@router.delete("/{item_id}")
def delete_item(
    item_id: str,
    account: Account = Depends(get_current_account),
    services: Services = Depends(get_services),
):
    services.catalog.delete_item(account, item_id)
    return {"success": True, "id": item_id}


@router.get("/{item_id}/claims")
def item_claims(
    item_id: str,
    account: Account = Depends(get_current_account),
    services: Services = Depends(get_services),
):
    """Claims on one item, for its owner."""
    item = services.catalog.get_item(item_id)
    if item.owner_id != account.id and not account.is_admin:
        raise PermissionDeniedError("Only the owner can view claims on this item.")
    claims = services.workflow.list_claims_for_item(item_id)
    return {"claims": [c.model_dump(mode="json") for c in claims], "count": len(claims)}


@router.get("/{item_id}/matches")
def suggested_matches(
    item_id: str,
    account: Account = Depends(get_current_account),
    services: Services = Depends(get_services),
):
    """Found items the matching assistant thinks could be this lost item."""
    item = services.catalog.get_item(item_id)
    if item.owner_id != account.id and not account.is_admin:
        raise PermissionDeniedError("Only the owner can request matches for this item.")
    if item.type != ItemType.LOST:
        raise ValidationError("Matches can only be suggested for lost items.")

    ids = services.matching.suggest_matches(item)
    matches = []
    for found_id in ids:
        matches.append(_item_dict(services.catalog.get_item(found_id)))
    return {
        "item_id": item_id,
        "enabled": services.matching.enabled,
        "matches": matches,
    }
