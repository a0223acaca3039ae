# Canonical Schemas for FindItNow
# Every document the store holds is one of these models.

from .account import (
    Account,
    AccountRole,
    AccountStatus,
    OtpChallenge,
    OtpPurpose,
    OtpRequest,
    SignupRequest,
    PartnerSignupRequest,
    PasswordResetRequest,
    LoginRequest,
    normalize_email,
)
from .item import (
    Item,
    ItemReport,
    ItemUpdate,
    ItemType,
    ItemStatus,
    ITEM_CATEGORIES,
)
from .claim import (
    Claim,
    ClaimForm,
    ClaimStatus,
    ALLOWED_TRANSITIONS,
)
from .message import Message, MessageForm
from .feedback import Feedback, FeedbackForm
from .maintenance import MaintenanceConfig, MaintenanceUpdate

__all__ = [
    # Account
    "Account",
    "AccountRole",
    "AccountStatus",
    "OtpChallenge",
    "OtpPurpose",
    "OtpRequest",
    "SignupRequest",
    "PartnerSignupRequest",
    "PasswordResetRequest",
    "LoginRequest",
    "normalize_email",
    # Item
    "Item",
    "ItemReport",
    "ItemUpdate",
    "ItemType",
    "ItemStatus",
    "ITEM_CATEGORIES",
    # Claim
    "Claim",
    "ClaimForm",
    "ClaimStatus",
    "ALLOWED_TRANSITIONS",
    # Chat
    "Message",
    "MessageForm",
    # Feedback
    "Feedback",
    "FeedbackForm",
    # Maintenance
    "MaintenanceConfig",
    "MaintenanceUpdate",
]
