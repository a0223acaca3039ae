"""
Canonical Claim Schema

A Claim is one party's assertion that a reported item is theirs.
Claims move forward only. No reversals.
"""

import re
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from .account import normalize_email


PHONE_PATTERN = re.compile(r"^([+]?[\s0-9]+)?(\d{3}|[(]?[0-9]+[)])?([-]?[\s]?[0-9])+$")


class ClaimStatus(str, Enum):
    """
    open -> accepted -> (resolving ->) resolved
    open -> rejected
    """
    OPEN = "open"
    ACCEPTED = "accepted"
    RESOLVING = "resolving"     # Partner flow: waiting for the claimant to confirm
    RESOLVED = "resolved"
    REJECTED = "rejected"


ALLOWED_TRANSITIONS: dict[ClaimStatus, frozenset[ClaimStatus]] = {
    ClaimStatus.OPEN: frozenset({ClaimStatus.ACCEPTED, ClaimStatus.REJECTED}),
    ClaimStatus.ACCEPTED: frozenset({ClaimStatus.RESOLVING, ClaimStatus.RESOLVED}),
    ClaimStatus.RESOLVING: frozenset({ClaimStatus.RESOLVED}),
    ClaimStatus.RESOLVED: frozenset(),
    ClaimStatus.REJECTED: frozenset(),
}

# Statuses in which the chat thread accepts new messages
CHAT_WRITABLE_STATUSES = frozenset({ClaimStatus.ACCEPTED})

# Statuses in which the chat thread exists at all
CHAT_VISIBLE_STATUSES = frozenset({
    ClaimStatus.ACCEPTED,
    ClaimStatus.RESOLVING,
    ClaimStatus.RESOLVED,
})


class ClaimForm(BaseModel):
    """
    What a claimant submits as proof of ownership.
    """
    full_name: str = Field(..., min_length=2, max_length=100)
    email: str
    phone_number: Optional[str] = Field(default=None, max_length=30)
    proof: str = Field(
        ...,
        min_length=20,
        max_length=2000,
        description="Detailed description proving ownership",
    )
    proof_image_url: Optional[str] = Field(default=None)

    @field_validator("email")
    @classmethod
    def _email(cls, v: str) -> str:
        return normalize_email(v)

    @field_validator("phone_number")
    @classmethod
    def _phone(cls, v: Optional[str]) -> Optional[str]:
        if v is None or not v.strip():
            return None
        if not PHONE_PATTERN.match(v.strip()):
            raise ValueError("Invalid Number!")
        return v.strip()

    @field_validator("proof")
    @classmethod
    def _proof(cls, v: str) -> str:
        if len(v.strip()) < 20:
            raise ValueError(
                "Please provide a detailed description as proof of ownership "
                "(at least 20 characters)."
            )
        return v.strip()


class Claim(BaseModel):
    """
    A claim on one item.

    chat_id is empty until the claim is accepted, then equals the claim id.
    """
    id: str
    item_id: str
    item_owner_id: str
    claimant_user_id: str

    full_name: str
    email: str
    phone_number: Optional[str] = None
    proof: str
    proof_image_url: Optional[str] = None

    status: ClaimStatus = Field(default=ClaimStatus.OPEN)
    submitted_at: datetime
    updated_at: Optional[datetime] = None
    chat_id: str = Field(default="")

    version: int = Field(default=0, description="Store version for optimistic checks")

    def can_transition_to(self, target: ClaimStatus) -> bool:
        return target in ALLOWED_TRANSITIONS[self.status]

    @property
    def chat_writable(self) -> bool:
        return self.status in CHAT_WRITABLE_STATUSES

    @property
    def chat_visible(self) -> bool:
        return self.status in CHAT_VISIBLE_STATUSES

    def is_party(self, account_id: str) -> bool:
        return account_id in (self.item_owner_id, self.claimant_user_id)
