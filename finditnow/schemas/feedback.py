"""
Canonical Feedback Schema

A short success story left by an item owner once a claim closes.
"""

from datetime import datetime

from pydantic import BaseModel, Field, field_validator


class FeedbackForm(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    story: str = Field(..., min_length=10, max_length=500)

    @field_validator("story")
    @classmethod
    def _story(cls, v: str) -> str:
        if len(v.strip()) < 10:
            raise ValueError("Please share a bit more (at least 10 characters).")
        return v.strip()


class Feedback(BaseModel):
    """
    user_* is whoever lost the item, finder_* whoever found it.
    Which party is which follows from the item type.
    """
    id: str
    claim_id: str
    item_id: str
    item_name: str
    rating: int = Field(..., ge=1, le=5)
    story: str
    user_id: str
    user_name: str
    finder_id: str
    finder_name: str
    created_at: datetime
    version: int = Field(default=0)
