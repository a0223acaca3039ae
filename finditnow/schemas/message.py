"""
Canonical Message Schema

A chat thread is an append-only log scoped to one claim.
Ordering comes from the server-assigned sequence, never from client clocks.
"""

from datetime import datetime

from pydantic import BaseModel, Field, field_validator


MAX_MESSAGE_LENGTH = 2000


class MessageForm(BaseModel):
    text: str = Field(..., min_length=1, max_length=MAX_MESSAGE_LENGTH)

    @field_validator("text")
    @classmethod
    def _text(cls, v: str) -> str:
        text = v.strip()
        if not text:
            raise ValueError("Message cannot be empty")
        return text


class Message(BaseModel):
    id: str
    chat_id: str = Field(..., description="Equals the claim id")
    sender_id: str
    text: str
    created_at: datetime
    sequence: int = Field(..., ge=1, description="Per-chat, strictly increasing")
    version: int = Field(default=0)
