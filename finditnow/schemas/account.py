"""
Canonical Account Schema

Users, partner organizations and administrators share one record.
The role is stored on the account and checked server-side; it is never
derived from the email address at request time.
"""

import re
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator


EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
MIN_PASSWORD_LENGTH = 6


def normalize_email(value: str) -> str:
    """Lower-case and validate an email address."""
    email = (value or "").strip().lower()
    if not EMAIL_PATTERN.match(email):
        raise ValueError("Please enter a valid email address.")
    return email


class AccountRole(str, Enum):
    USER = "user"
    PARTNER = "partner"         # Airports, hotels, venues
    ADMIN = "admin"


class AccountStatus(str, Enum):
    """
    Only ACTIVE accounts may act.
    """
    ACTIVE = "active"
    SUSPENDED = "suspended"
    BANNED = "banned"


class OtpPurpose(str, Enum):
    SIGNUP = "signup"
    PARTNER_SIGNUP = "partner_signup"
    PASSWORD_RESET = "password_reset"


class Account(BaseModel):
    """
    A registered party.

    password_hash never leaves the server; use public() for responses.
    """
    id: str = Field(..., description="Unique identifier")
    email: str = Field(..., description="Login email, stored lower-cased")
    password_hash: str = Field(..., description="Argon2 hash")
    role: AccountRole = Field(default=AccountRole.USER)
    status: AccountStatus = Field(default=AccountStatus.ACTIVE)
    created_at: datetime = Field(..., description="When the account was created")

    # Partner-only
    business_name: Optional[str] = Field(default=None)
    business_type: Optional[str] = Field(default=None)

    version: int = Field(default=0, description="Store version for optimistic checks")

    @property
    def is_partner(self) -> bool:
        return self.role == AccountRole.PARTNER

    @property
    def is_admin(self) -> bool:
        return self.role == AccountRole.ADMIN

    @property
    def is_active(self) -> bool:
        return self.status == AccountStatus.ACTIVE

    @property
    def display_name(self) -> str:
        if self.is_partner and self.business_name:
            return self.business_name
        return self.email

    def public(self) -> dict:
        return {
            "id": self.id,
            "email": self.email,
            "role": self.role.value,
            "status": self.status.value,
            "is_partner": self.is_partner,
            "is_admin": self.is_admin,
            "business_name": self.business_name,
            "business_type": self.business_type,
            "created_at": self.created_at.isoformat(),
        }


class OtpChallenge(BaseModel):
    """
    A pending one-time password. Only the hash of the code is stored.
    """
    id: str = Field(..., description="'{purpose}:{email}'")
    email: str
    purpose: OtpPurpose
    code_hash: str
    expires_at: datetime
    attempts: int = Field(default=0, ge=0)
    version: int = Field(default=0)


class SignupRequest(BaseModel):
    email: str
    password: str = Field(..., min_length=MIN_PASSWORD_LENGTH)
    otp: str = Field(..., min_length=6, max_length=6)

    @field_validator("email")
    @classmethod
    def _email(cls, v: str) -> str:
        return normalize_email(v)


class PartnerSignupRequest(SignupRequest):
    business_name: str = Field(..., min_length=2, max_length=120)
    business_type: str = Field(..., min_length=1, max_length=60)


class PasswordResetRequest(SignupRequest):
    pass


class OtpRequest(BaseModel):
    email: str
    purpose: OtpPurpose = OtpPurpose.SIGNUP

    @field_validator("email")
    @classmethod
    def _email(cls, v: str) -> str:
        return normalize_email(v)


class LoginRequest(BaseModel):
    email: str
    password: str = Field(..., min_length=1)

    @field_validator("email")
    @classmethod
    def _email(cls, v: str) -> str:
        return normalize_email(v)
