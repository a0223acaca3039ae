"""
Feedback: success stories left once a claim closes.

Only the item owner writes feedback, once per claim, after the claim is
resolved (or resolving, for partner hand-overs), and only on the claim the
item was handed over through. Who "lost" and who "found" follows from the
item type.
"""

from datetime import datetime, timezone
from uuid import uuid4

from ..db.store import DocumentStore
from ..observability import get_logger
from ..schemas import (
    Account,
    Claim,
    ClaimStatus,
    Feedback,
    FeedbackForm,
    Item,
    ItemType,
)
from .errors import NotFoundError, PermissionDeniedError, ValidationError


logger = get_logger("finditnow.feedback")

FEEDBACK = "feedback"
CLAIMS = "claims"
ITEMS = "items"

FEEDBACK_STATUSES = (ClaimStatus.RESOLVED, ClaimStatus.RESOLVING)


class FeedbackService:

    def __init__(self, store: DocumentStore):
        self._store = store

    def submit_feedback(self, claim_id: str, actor: Account, form: FeedbackForm) -> Feedback:
        with self._store.begin_batch() as ctx:
            claim_doc = ctx.get(CLAIMS, claim_id)
            if claim_doc is None:
                raise NotFoundError(f"Claim {claim_id} not found")
            claim = Claim.model_validate(claim_doc)

            if claim.item_owner_id != actor.id:
                raise PermissionDeniedError("Only the item owner can leave feedback.")
            if claim.status not in FEEDBACK_STATUSES:
                raise ValidationError("Feedback opens once the item has been handed over.")
            if ctx.find(FEEDBACK, claim_id=claim_id):
                raise ValidationError("Feedback for this claim was already submitted.")

            item_doc = ctx.get(ITEMS, claim.item_id)
            if item_doc is None:
                raise NotFoundError(f"Item {claim.item_id} not found")
            item = Item.model_validate(item_doc)
            if item.resolved_claim_id != claim.id:
                raise ValidationError("This item was handed over through another claim.")

            owner = (actor.id, actor.display_name)
            claimant = (claim.claimant_user_id, claim.full_name)
            lost_by, found_by = (owner, claimant) if item.type == ItemType.LOST else (claimant, owner)

            feedback = Feedback(
                id=str(uuid4()),
                claim_id=claim.id,
                item_id=item.id,
                item_name=item.name,
                rating=form.rating,
                story=form.story,
                user_id=lost_by[0],
                user_name=lost_by[1],
                finder_id=found_by[0],
                finder_name=found_by[1],
                created_at=datetime.now(timezone.utc),
            )
            stored = ctx.insert(FEEDBACK, feedback.model_dump(mode="json"))
            ctx.commit()

        logger.info("Feedback submitted", claim_id=claim_id, rating=form.rating)
        return Feedback.model_validate(stored)

    def recent_feedback(self, limit: int = 3) -> list[Feedback]:
        entries = [Feedback.model_validate(d) for d in self._store.find(FEEDBACK)]
        entries.sort(key=lambda f: f.created_at, reverse=True)
        return entries[:limit]
