"""
Canonical Item Schema

An Item is a report of something lost or found.
It stays open until a claim resolves it or an administrator closes it.
"""

import datetime as dt
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from .account import normalize_email


ITEM_CATEGORIES = [
    "electronics",
    "wallets",
    "keys",
    "accessories",
    "bags",
    "clothing",
    "bottles",
    "toys",
    "documents",
    "other",
]

EARLIEST_REPORT_DATE = dt.date(2000, 1, 1)


class ItemType(str, Enum):
    LOST = "lost"
    FOUND = "found"


class ItemStatus(str, Enum):
    """
    Open items are listed and claimable. Resolved items are neither.
    """
    OPEN = "open"
    RESOLVED = "resolved"


def _check_category(value: str) -> str:
    category = value.strip().lower()
    if category not in ITEM_CATEGORIES:
        raise ValueError(f"Unknown category '{value}'. Valid: {', '.join(ITEM_CATEGORIES)}")
    return category


def _check_report_date(value: dt.date) -> dt.date:
    if value > dt.datetime.now(dt.timezone.utc).date():
        raise ValueError("date cannot be in the future")
    if value < EARLIEST_REPORT_DATE:
        raise ValueError("date cannot be before 2000-01-01")
    return value


class ItemReport(BaseModel):
    """
    What a reporter submits. Ownership and status are assigned by the server.
    """
    type: ItemType = Field(..., description="lost or found")
    name: str = Field(..., min_length=3, max_length=50)
    category: str = Field(..., description="One of ITEM_CATEGORIES")
    description: str = Field(..., min_length=10, max_length=500)
    distinguishing_marks: Optional[str] = Field(default=None, max_length=500)
    location: str = Field(..., min_length=3, max_length=100)
    date: dt.date = Field(..., description="When the item was lost or found")
    image_url: str = Field(default="", description="URL or data URI of the photo")
    contact: str = Field(..., description="Contact email shown to claimants")
    phone_number: Optional[str] = Field(default=None, max_length=30)
    lat: Optional[float] = Field(default=None, ge=-90, le=90)
    lng: Optional[float] = Field(default=None, ge=-180, le=180)

    @field_validator("category")
    @classmethod
    def _category(cls, v: str) -> str:
        return _check_category(v)

    @field_validator("date")
    @classmethod
    def _date(cls, v: dt.date) -> dt.date:
        return _check_report_date(v)

    @field_validator("contact")
    @classmethod
    def _contact(cls, v: str) -> str:
        return normalize_email(v)


class ItemUpdate(BaseModel):
    """Owner edits. Omitted fields are left unchanged."""
    name: Optional[str] = Field(default=None, min_length=3, max_length=50)
    category: Optional[str] = None
    description: Optional[str] = Field(default=None, min_length=10, max_length=500)
    distinguishing_marks: Optional[str] = Field(default=None, max_length=500)
    location: Optional[str] = Field(default=None, min_length=3, max_length=100)
    date: Optional[dt.date] = None
    image_url: Optional[str] = None
    phone_number: Optional[str] = Field(default=None, max_length=30)

    @field_validator("category")
    @classmethod
    def _category(cls, v: Optional[str]) -> Optional[str]:
        return _check_category(v) if v is not None else v

    @field_validator("date")
    @classmethod
    def _date(cls, v: Optional[dt.date]) -> Optional[dt.date]:
        return _check_report_date(v) if v is not None else v


class Item(BaseModel):
    """
    A lost or found item as stored in the catalog.
    """
    id: str = Field(..., description="Unique identifier")
    type: ItemType
    name: str
    category: str
    description: str
    distinguishing_marks: Optional[str] = None
    location: str
    date: dt.date
    image_url: str = ""
    contact: str
    phone_number: Optional[str] = None
    lat: Optional[float] = None
    lng: Optional[float] = None

    owner_id: str = Field(..., description="Account that reported the item")
    status: ItemStatus = Field(default=ItemStatus.OPEN)
    created_at: dt.datetime
    resolved_at: Optional[dt.datetime] = None
    resolved_claim_id: Optional[str] = Field(
        default=None, description="Claim through which the item was handed over"
    )

    version: int = Field(default=0, description="Store version for optimistic checks")

    @property
    def is_open(self) -> bool:
        return self.status == ItemStatus.OPEN
