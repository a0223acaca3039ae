"""
Item Catalog

Lost and found reports. Items stay open until a claim resolves them or an
administrator closes them; only open items are browsable or claimable.
"""

from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

from ..db.store import DocumentStore
from ..observability import get_logger, get_metrics
from ..schemas import (
    ITEM_CATEGORIES,
    Account,
    Item,
    ItemReport,
    ItemStatus,
    ItemType,
    ItemUpdate,
)
from .errors import NotFoundError, PermissionDeniedError, ValidationError
from .mailer import Mailer


logger = get_logger("finditnow.catalog")

ITEMS = "items"
CLAIMS = "claims"
MESSAGES = "messages"


def _newest_first(items: list[Item]) -> list[Item]:
    return sorted(items, key=lambda i: i.created_at, reverse=True)


class ItemCatalog:
    """Owns the items collection."""

    def __init__(self, store: DocumentStore, mailer: Mailer):
        self._store = store
        self._mailer = mailer

    @staticmethod
    def categories() -> list[str]:
        return list(ITEM_CATEGORIES)

    def report_item(self, owner: Account, report: ItemReport) -> Item:
        """Create an open item owned by owner and confirm by email."""
        item = Item(
            id=str(uuid4()),
            owner_id=owner.id,
            status=ItemStatus.OPEN,
            created_at=datetime.now(timezone.utc),
            **report.model_dump(),
        )

        with self._store.begin_batch() as ctx:
            stored = ctx.insert(ITEMS, item.model_dump(mode="json"))
            ctx.commit()

        get_metrics().incr("items_reported")
        logger.info(
            "Item reported",
            item_id=item.id,
            type=item.type.value,
            category=item.category,
            owner_id=owner.id,
        )

        self._mailer.send_best_effort(
            "report-confirmation",
            owner.email,
            itemType=item.type.value,
            itemName=item.name,
            category=item.category,
            location=item.location,
            date=item.date.isoformat(),
        )
        return Item.model_validate(stored)

    def get_item(self, item_id: str) -> Item:
        doc = self._store.get(ITEMS, item_id)
        if doc is None:
            raise NotFoundError(f"Item {item_id} not found")
        return Item.model_validate(doc)

    def browse(
        self,
        search: Optional[str] = None,
        category: Optional[str] = None,
        item_type: Optional[ItemType] = None,
    ) -> list[Item]:
        """
        Open items, newest first.

        search matches name, description or location, case-insensitively.
        """
        match = {"status": ItemStatus.OPEN}
        if category:
            match["category"] = category.strip().lower()
        if item_type is not None:
            match["type"] = item_type

        items = [Item.model_validate(d) for d in self._store.find(ITEMS, **match)]

        if search and search.strip():
            term = search.strip().lower()
            items = [
                i for i in items
                if term in i.name.lower()
                or term in i.description.lower()
                or term in i.location.lower()
            ]
        return _newest_first(items)

    def list_for_owner(self, owner_id: str) -> list[Item]:
        return _newest_first(
            [Item.model_validate(d) for d in self._store.find(ITEMS, owner_id=owner_id)]
        )

    def list_all(self, search: Optional[str] = None) -> list[Item]:
        """Every item regardless of status (admin view)."""
        items = [Item.model_validate(d) for d in self._store.find(ITEMS)]
        if search and search.strip():
            term = search.strip().lower()
            items = [
                i for i in items
                if term in i.name.lower() or term in i.location.lower() or term in i.category
            ]
        return _newest_first(items)

    def list_found_candidates(self) -> list[Item]:
        """Open found items, the pool the matcher ranks against."""
        return [
            Item.model_validate(d)
            for d in self._store.find(ITEMS, status=ItemStatus.OPEN, type=ItemType.FOUND)
        ]

    def update_item(self, actor: Account, item_id: str, changes: ItemUpdate) -> Item:
        """
        Apply owner edits to an open item.

        Raises:
            NotFoundError: no such item
            PermissionDeniedError: actor is not the owner
            ValidationError: the item is already resolved
        """
        updates = changes.model_dump(mode="json", exclude_unset=True, exclude_none=True)
        if not updates:
            raise ValidationError("No changes given.")

        with self._store.begin_batch() as ctx:
            doc = ctx.get(ITEMS, item_id)
            if doc is None:
                raise NotFoundError(f"Item {item_id} not found")
            if doc["owner_id"] != actor.id:
                raise PermissionDeniedError("Only the owner can edit this item.")
            if doc["status"] != ItemStatus.OPEN.value:
                raise ValidationError("Resolved items cannot be edited.")

            stored = ctx.update(ITEMS, dict(doc, **updates), expected_version=doc["version"])
            ctx.commit()

        logger.info("Item updated", item_id=item_id, fields=sorted(updates))
        return Item.model_validate(stored)

    def delete_item(self, actor: Account, item_id: str) -> None:
        """
        Hard-delete an item with its claims and their chat messages.

        Allowed for the owner and for administrators.
        """
        with self._store.begin_batch() as ctx:
            doc = ctx.get(ITEMS, item_id)
            if doc is None:
                raise NotFoundError(f"Item {item_id} not found")
            if doc["owner_id"] != actor.id and not actor.is_admin:
                raise PermissionDeniedError("Only the owner can delete this item.")

            claims = ctx.find(CLAIMS, item_id=item_id)
            removed_messages = 0
            for claim in claims:
                for message in ctx.find(MESSAGES, chat_id=claim["id"]):
                    ctx.delete(MESSAGES, message["id"])
                    removed_messages += 1
                ctx.delete(CLAIMS, claim["id"], expected_version=claim["version"])

            ctx.delete(ITEMS, item_id, expected_version=doc["version"])
            ctx.commit()

        logger.info(
            "Item deleted",
            item_id=item_id,
            deleted_by=actor.id,
            claims=len(claims),
            messages=removed_messages,
        )
