"""
Chat Service

One append-only thread per claim; the chat id is the claim id.

Rules (enforced in code):
- Only the item owner and the claimant may write
- Writes are accepted only while the claim is "accepted"; the status is
  checked inside the same batch that appends, so a message can never land
  after the claim was resolved
- Sequence numbers are assigned by the server, strictly increasing per chat
- The thread stays readable for both parties and admins once locked
"""

from datetime import datetime, timezone
from threading import Lock
from typing import Callable, Optional

from ..db.store import DocumentStore
from ..observability import get_logger, get_metrics
from ..schemas import Account, Claim, Message
from ..schemas.message import MAX_MESSAGE_LENGTH
from .errors import NotFoundError, PermissionDeniedError, ValidationError


logger = get_logger("finditnow.chat")

CLAIMS = "claims"
MESSAGES = "messages"

Listener = Callable[[Message], None]


class ChatService:

    def __init__(self, store: DocumentStore):
        self._store = store
        self._listeners: dict[str, list[Listener]] = {}
        self._listeners_lock = Lock()

    def _load_claim(self, chat_id: str) -> Claim:
        doc = self._store.get(CLAIMS, chat_id)
        if doc is None:
            raise NotFoundError(f"Chat {chat_id} not found")
        return Claim.model_validate(doc)

    @staticmethod
    def _require_reader(claim: Claim, viewer: Account) -> None:
        if not claim.is_party(viewer.id) and not viewer.is_admin:
            raise PermissionDeniedError("You are not part of this conversation.")

    def send_message(self, chat_id: str, sender: Account, text: str) -> Message:
        """
        Append a message.

        Raises:
            ValidationError: empty or too long text, or the chat is locked
            PermissionDeniedError: sender is not a party to the claim
            NotFoundError: no such chat
        """
        text = (text or "").strip()
        if not text:
            raise ValidationError("Message cannot be empty.")
        if len(text) > MAX_MESSAGE_LENGTH:
            raise ValidationError(f"Message cannot exceed {MAX_MESSAGE_LENGTH} characters.")

        with self._store.begin_batch() as ctx:
            doc = ctx.get(CLAIMS, chat_id)
            if doc is None:
                raise NotFoundError(f"Chat {chat_id} not found")
            claim = Claim.model_validate(doc)

            if not claim.is_party(sender.id):
                raise PermissionDeniedError("You are not part of this conversation.")
            if not claim.chat_writable:
                raise ValidationError(
                    f"This chat is read-only because the claim is {claim.status.value}."
                )

            existing = ctx.find(MESSAGES, chat_id=chat_id)
            sequence = max((m["sequence"] for m in existing), default=0) + 1

            message = Message(
                id=f"{chat_id}-{sequence:06d}",
                chat_id=chat_id,
                sender_id=sender.id,
                text=text,
                created_at=datetime.now(timezone.utc),
                sequence=sequence,
            )
            stored = Message.model_validate(ctx.insert(MESSAGES, message.model_dump(mode="json")))
            ctx.commit()

        get_metrics().incr("messages_sent")
        logger.debug("Message sent", chat_id=chat_id, sequence=sequence, sender_id=sender.id)
        self._notify(stored)
        return stored

    def list_messages(self, chat_id: str, viewer: Account, after: int = 0) -> list[Message]:
        """Messages with sequence > after, oldest first."""
        claim = self._load_claim(chat_id)
        self._require_reader(claim, viewer)

        messages = [
            Message.model_validate(d)
            for d in self._store.find(MESSAGES, chat_id=chat_id)
            if d["sequence"] > after
        ]
        return sorted(messages, key=lambda m: m.sequence)

    def chat_state(self, chat_id: str, viewer: Account) -> dict:
        """What a client needs to render the thread header and input box."""
        claim = self._load_claim(chat_id)
        self._require_reader(claim, viewer)

        item = self._store.get("items", claim.item_id)
        return {
            "chat_id": chat_id,
            "claim_id": claim.id,
            "item_id": claim.item_id,
            "item_name": item["name"] if item else "",
            "status": claim.status.value,
            "available": claim.chat_visible,
            "locked": not claim.chat_writable,
            "owner_id": claim.item_owner_id,
            "claimant_id": claim.claimant_user_id,
        }

    # ----------------------------------------------------------------
    # Live subscriptions
    # ----------------------------------------------------------------

    def add_listener(self, chat_id: str, callback: Listener) -> Callable[[], None]:
        """
        Call callback with every message appended to chat_id from now on.

        Returns a function that removes the listener.
        """
        with self._listeners_lock:
            self._listeners.setdefault(chat_id, []).append(callback)

        def remove() -> None:
            with self._listeners_lock:
                callbacks = self._listeners.get(chat_id, [])
                if callback in callbacks:
                    callbacks.remove(callback)
                if not callbacks:
                    self._listeners.pop(chat_id, None)

        return remove

    def listener_count(self, chat_id: Optional[str] = None) -> int:
        with self._listeners_lock:
            if chat_id is not None:
                return len(self._listeners.get(chat_id, []))
            return sum(len(v) for v in self._listeners.values())

    def _notify(self, message: Message) -> None:
        with self._listeners_lock:
            callbacks = list(self._listeners.get(message.chat_id, []))
        for callback in callbacks:
            try:
                callback(message)
            except Exception:
                logger.exception("Chat listener failed", chat_id=message.chat_id)
