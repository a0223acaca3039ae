"""
Claim Workflow - the claim lifecycle state machine.

    open -> accepted -> resolved             (item owner is a user)
    open -> accepted -> resolving -> resolved (item owner is a partner;
                                               the claimant confirms receipt)
    open -> rejected

Rules (enforced in code):
- Only the item owner accepts, rejects or resolves a claim
- Only the claimant confirms a partner resolution
- Claims cannot be filed on resolved items or on one's own item
- Resolving closes the item and every sibling claim in ONE batch:
  open siblings are rejected, accepted siblings are resolved

LOCK ORDER:
Every batch that touches a claim locks the item first, then claims.
Claim submission locks the item too, so a submission and a resolve of the
same item are serialized and a resolved item never gains an open claim.
"""

from datetime import datetime, timezone
from typing import Any, Optional
from uuid import uuid4

from ..db.store import BatchContext, DocumentStore
from ..observability import get_logger, get_metrics
from ..schemas import (
    Account,
    Claim,
    ClaimForm,
    ClaimStatus,
    Item,
    ItemStatus,
)
from .errors import NotFoundError, PermissionDeniedError, ValidationError
from .mailer import Mailer


logger = get_logger("finditnow.workflow")

ITEMS = "items"
CLAIMS = "claims"
ACCOUNTS = "accounts"

# Claims still waiting on someone
ACTIVE_STATUSES = (ClaimStatus.OPEN, ClaimStatus.ACCEPTED)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _newest_first(claims: list[Claim]) -> list[Claim]:
    return sorted(claims, key=lambda c: c.submitted_at, reverse=True)


def _transition(claim: dict, target: ClaimStatus, at: datetime, **changes: Any) -> dict:
    """Return an updated copy of a claim document, enforcing the allowed edges."""
    current = Claim.model_validate(claim)
    if not current.can_transition_to(target):
        raise ValidationError(
            f"Cannot move a claim from {current.status.value} to {target.value}."
        )
    return dict(claim, status=target.value, updated_at=at.isoformat(), **changes)


def _handed_over(claim: Claim, item: Optional[dict]) -> bool:
    """True when the item was handed over through this claim."""
    return item is not None and item.get("resolved_claim_id") == claim.id


def _close_siblings(ctx: BatchContext, item_id: str, skip_id: Optional[str], at: datetime) -> int:
    """
    Reject open claims and resolve accepted claims on item_id.

    Only the item's resolved_claim_id records who actually received it.
    """
    closed = 0
    for sibling in ctx.find(CLAIMS, item_id=item_id):
        if sibling["id"] == skip_id:
            continue
        status = ClaimStatus(sibling["status"])
        if status == ClaimStatus.OPEN:
            target = ClaimStatus.REJECTED
        elif status == ClaimStatus.ACCEPTED:
            target = ClaimStatus.RESOLVED
        else:
            continue
        ctx.update(
            CLAIMS,
            _transition(sibling, target, at),
            expected_version=sibling["version"],
        )
        closed += 1
    return closed


class ClaimWorkflow:
    """
    Owns the claims collection and the item status changes caused by claims.
    """

    def __init__(self, store: DocumentStore, mailer: Mailer):
        self._store = store
        self._mailer = mailer

    # ----------------------------------------------------------------
    # Internal helpers
    # ----------------------------------------------------------------

    def _lock_claim(self, ctx: BatchContext, claim_id: str) -> tuple[dict, dict]:
        """Lock the claim's item, then the claim. Returns (claim, item)."""
        peek = self._store.get(CLAIMS, claim_id)
        if peek is None:
            raise NotFoundError(f"Claim {claim_id} not found")

        item = ctx.get(ITEMS, peek["item_id"])
        claim = ctx.get(CLAIMS, claim_id)
        if claim is None:
            raise NotFoundError(f"Claim {claim_id} not found")
        if item is None:
            raise NotFoundError(f"Item {peek['item_id']} not found")
        return claim, item

    @staticmethod
    def _require_owner(actor: Account, claim: dict) -> None:
        if claim["item_owner_id"] != actor.id:
            raise PermissionDeniedError("Only the item owner can do this.")

    # ----------------------------------------------------------------
    # Lifecycle
    # ----------------------------------------------------------------

    def submit_claim(self, item_id: str, claimant: Account, form: ClaimForm) -> Claim:
        """
        File a claim on an open item.

        Raises:
            NotFoundError: no such item
            ValidationError: item resolved, own item, or an active claim exists
        """
        with self._store.begin_batch() as ctx:
            item_doc = ctx.get(ITEMS, item_id)
            if item_doc is None:
                raise NotFoundError(f"Item {item_id} not found")
            item = Item.model_validate(item_doc)

            if item.status == ItemStatus.RESOLVED:
                raise ValidationError("This item has already been resolved.")
            if item.owner_id == claimant.id:
                raise ValidationError("You cannot claim your own item.")

            for existing in ctx.find(CLAIMS, item_id=item_id, claimant_user_id=claimant.id):
                if ClaimStatus(existing["status"]) in ACTIVE_STATUSES:
                    raise ValidationError("You already have an active claim on this item.")

            claim = Claim(
                id=str(uuid4()),
                item_id=item.id,
                item_owner_id=item.owner_id,
                claimant_user_id=claimant.id,
                status=ClaimStatus.OPEN,
                submitted_at=_now(),
                **form.model_dump(),
            )
            stored = ctx.insert(CLAIMS, claim.model_dump(mode="json"))
            ctx.commit()

        get_metrics().incr("claims_submitted")
        logger.info(
            "Claim submitted",
            claim_id=claim.id,
            item_id=item.id,
            claimant_id=claimant.id,
        )

        owner_doc = self._store.get(ACCOUNTS, item.owner_id)
        owner_name = Account.model_validate(owner_doc).display_name if owner_doc else item.contact
        self._mailer.send_best_effort(
            "new-enquiry",
            item.contact,
            name=owner_name,
            itemName=item.name,
        )
        return Claim.model_validate(stored)

    def accept_claim(self, claim_id: str, actor: Account) -> Claim:
        """
        open -> accepted. Unlocks the chat thread, keyed by the claim id.
        """
        with self._store.begin_batch() as ctx:
            claim, item = self._lock_claim(ctx, claim_id)
            self._require_owner(actor, claim)
            if item["status"] != ItemStatus.OPEN.value:
                raise ValidationError("This item has already been resolved.")

            stored = ctx.update(
                CLAIMS,
                _transition(claim, ClaimStatus.ACCEPTED, _now(), chat_id=claim["id"]),
                expected_version=claim["version"],
            )
            ctx.commit()

        logger.info("Claim accepted", claim_id=claim_id, item_id=item["id"])
        self._mailer.send_best_effort(
            "claim-approval",
            stored["email"],
            name=stored["full_name"],
            itemName=item["name"],
        )
        return Claim.model_validate(stored)

    def reject_claim(self, claim_id: str, actor: Account) -> Claim:
        """open -> rejected. Terminal."""
        with self._store.begin_batch() as ctx:
            claim, item = self._lock_claim(ctx, claim_id)
            self._require_owner(actor, claim)

            stored = ctx.update(
                CLAIMS,
                _transition(claim, ClaimStatus.REJECTED, _now()),
                expected_version=claim["version"],
            )
            ctx.commit()

        logger.info("Claim rejected", claim_id=claim_id, item_id=item["id"])
        return Claim.model_validate(stored)

    def resolve_claim(self, claim_id: str, actor: Account) -> Claim:
        """
        Hand the item over.

        In one batch: the item becomes resolved, the claim becomes resolved
        (or resolving when the owner is a partner), and every sibling claim
        is closed. Any version conflict aborts the whole batch.

        Raises:
            PermissionDeniedError: actor does not own the item
            ValidationError: claim is not accepted
            ConcurrencyError: something changed underneath the batch
        """
        target = ClaimStatus.RESOLVING if actor.is_partner else ClaimStatus.RESOLVED

        with self._store.begin_batch() as ctx:
            claim, item = self._lock_claim(ctx, claim_id)
            self._require_owner(actor, claim)
            if claim["status"] != ClaimStatus.ACCEPTED.value:
                raise ValidationError("Only accepted claims can be resolved.")
            if item["status"] != ItemStatus.OPEN.value:
                raise ValidationError("This item has already been resolved.")

            at = _now()
            ctx.update(
                ITEMS,
                dict(
                    item,
                    status=ItemStatus.RESOLVED.value,
                    resolved_at=at.isoformat(),
                    resolved_claim_id=claim_id,
                ),
                expected_version=item["version"],
            )
            stored = ctx.update(
                CLAIMS,
                _transition(claim, target, at),
                expected_version=claim["version"],
            )
            closed = _close_siblings(ctx, item["id"], claim_id, at)
            ctx.commit()

        get_metrics().incr("claims_resolved")
        logger.info(
            "Claim resolved",
            claim_id=claim_id,
            item_id=item["id"],
            status=target.value,
            siblings_closed=closed,
        )
        return Claim.model_validate(stored)

    def confirm_resolution(self, claim_id: str, actor: Account) -> Claim:
        """resolving -> resolved. The claimant confirms they got the item back."""
        with self._store.begin_batch() as ctx:
            claim, _ = self._lock_claim(ctx, claim_id)
            if claim["claimant_user_id"] != actor.id:
                raise PermissionDeniedError("Only the claimant can confirm receipt.")
            if claim["status"] != ClaimStatus.RESOLVING.value:
                raise ValidationError("There is no hand-over waiting for your confirmation.")

            stored = ctx.update(
                CLAIMS,
                _transition(claim, ClaimStatus.RESOLVED, _now()),
                expected_version=claim["version"],
            )
            ctx.commit()

        logger.info("Claim resolution confirmed", claim_id=claim_id)
        return Claim.model_validate(stored)

    def admin_resolve_item(self, actor: Account, item_id: str) -> Item:
        """Close an item from the moderation console, with its claims."""
        if not actor.is_admin:
            raise PermissionDeniedError("Admin role required.")

        with self._store.begin_batch() as ctx:
            item = ctx.get(ITEMS, item_id)
            if item is None:
                raise NotFoundError(f"Item {item_id} not found")
            if item["status"] == ItemStatus.RESOLVED.value:
                raise ValidationError("This item has already been resolved.")

            at = _now()
            stored = ctx.update(
                ITEMS,
                dict(item, status=ItemStatus.RESOLVED.value, resolved_at=at.isoformat()),
                expected_version=item["version"],
            )
            closed = _close_siblings(ctx, item_id, None, at)
            ctx.commit()

        logger.info(
            "Item resolved by admin",
            item_id=item_id,
            resolved_by=actor.id,
            claims_closed=closed,
        )
        return Item.model_validate(stored)

    # ----------------------------------------------------------------
    # Reads
    # ----------------------------------------------------------------

    def get_claim(self, claim_id: str, viewer: Account) -> Claim:
        doc = self._store.get(CLAIMS, claim_id)
        if doc is None:
            raise NotFoundError(f"Claim {claim_id} not found")
        claim = Claim.model_validate(doc)
        if not claim.is_party(viewer.id) and not viewer.is_admin:
            raise PermissionDeniedError("You are not part of this claim.")
        return claim

    def list_enquiries(self, owner: Account) -> list[Claim]:
        """Claims filed on owner's items, newest first."""
        docs = self._store.find(CLAIMS, item_owner_id=owner.id)
        return _newest_first([Claim.model_validate(d) for d in docs])

    def list_open_enquiries(self, owner: Account) -> list[Claim]:
        docs = self._store.find(CLAIMS, item_owner_id=owner.id, status=ClaimStatus.OPEN)
        return _newest_first([Claim.model_validate(d) for d in docs])

    def list_my_claims(self, claimant: Account) -> list[Claim]:
        docs = self._store.find(CLAIMS, claimant_user_id=claimant.id)
        return _newest_first([Claim.model_validate(d) for d in docs])

    def list_claims_for_item(self, item_id: str) -> list[Claim]:
        return _newest_first(
            [Claim.model_validate(d) for d in self._store.find(CLAIMS, item_id=item_id)]
        )

    def list_all_claims(self, search: Optional[str] = None) -> list[Claim]:
        claims = [Claim.model_validate(d) for d in self._store.find(CLAIMS)]
        if search and search.strip():
            term = search.strip().lower()
            claims = [
                c for c in claims
                if term in c.full_name.lower() or term in c.email or term in c.status.value
            ]
        return _newest_first(claims)

    def _items_for(self, claims: list[Claim]) -> dict[str, dict]:
        items = {}
        for item_id in {c.item_id for c in claims}:
            doc = self._store.get(ITEMS, item_id)
            if doc:
                items[item_id] = doc
        return items

    def item_names(self, claims: list[Claim]) -> dict[str, str]:
        """item_id -> item name for the given claims."""
        return {item_id: doc["name"] for item_id, doc in self._items_for(claims).items()}

    # ----------------------------------------------------------------
    # Notifications and stats
    # ----------------------------------------------------------------

    def notification_count(self, account: Account) -> int:
        """Open claims waiting on this account's decision."""
        return self._store.count(CLAIMS, item_owner_id=account.id, status=ClaimStatus.OPEN)

    def notifications(self, account: Account) -> list[dict]:
        """
        Derived feed: new enquiries on my items and decisions on my claims.

        A resolved claim whose item went to someone else reads "claim_closed".
        """
        incoming = self.list_open_enquiries(account)
        decided = [c for c in self.list_my_claims(account) if c.status != ClaimStatus.OPEN]
        items = self._items_for(incoming + decided)
        names = {item_id: doc["name"] for item_id, doc in items.items()}

        entries = []
        for claim in incoming:
            entries.append({
                "kind": "new_enquiry",
                "claim_id": claim.id,
                "item_id": claim.item_id,
                "item_name": names.get(claim.item_id, ""),
                "status": claim.status.value,
                "at": claim.submitted_at,
            })
        for claim in decided:
            kind = f"claim_{claim.status.value}"
            if claim.status == ClaimStatus.RESOLVED and not _handed_over(claim, items.get(claim.item_id)):
                kind = "claim_closed"
            entries.append({
                "kind": kind,
                "claim_id": claim.id,
                "item_id": claim.item_id,
                "item_name": names.get(claim.item_id, ""),
                "status": claim.status.value,
                "at": claim.updated_at or claim.submitted_at,
            })
        return sorted(entries, key=lambda e: e["at"], reverse=True)

    def dashboard_stats(self) -> dict[str, int]:
        """Moderation console counters."""
        partner_ids = {
            d["id"] for d in self._store.find(ACCOUNTS, role="partner")
        }
        items = self._store.find(ITEMS)
        claims = self._store.find(CLAIMS)
        return {
            "total_items": len(items),
            "open_items": sum(1 for i in items if i["status"] == ItemStatus.OPEN.value),
            "resolved_items": sum(1 for i in items if i["status"] == ItemStatus.RESOLVED.value),
            "partner_items": sum(1 for i in items if i["owner_id"] in partner_ids),
            "active_claims": sum(
                1 for c in claims if ClaimStatus(c["status"]) in ACTIVE_STATUSES
            ),
            "total_accounts": self._store.count(ACCOUNTS),
        }

    def owner_stats(self, owner: Account) -> dict[str, int]:
        """Counters for one owner's dashboard."""
        items = self._store.find(ITEMS, owner_id=owner.id)
        claims = self._store.find(CLAIMS, item_owner_id=owner.id)
        return {
            "items_reported": len(items),
            "open_items": sum(1 for i in items if i["status"] == ItemStatus.OPEN.value),
            "resolved_items": sum(1 for i in items if i["status"] == ItemStatus.RESOLVED.value),
            "open_enquiries": sum(1 for c in claims if c["status"] == ClaimStatus.OPEN.value),
            "total_enquiries": len(claims),
        }
