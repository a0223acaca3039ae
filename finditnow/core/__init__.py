# Core FindItNow services
from .errors import (
    WorkflowError,
    ValidationError,
    NotFoundError,
    PermissionDeniedError,
    AuthenticationError,
    AccountStatusError,
    RateLimitError,
    ConcurrencyError,
    LockTimeoutError,
)
from .mailer import Mailer, EmailConfig, EmailDeliveryError, render_template, TEMPLATES
from .identity import IdentityService, hash_password, verify_password
from .catalog import ItemCatalog
from .workflow import ClaimWorkflow
from .chat import ChatService
from .feedback import FeedbackService
from .maintenance import MaintenanceService
from .matching import (
    MatchingService,
    MatchingConfig,
    LlmClient,
    GeminiClient,
    similarity_score,
)

__all__ = [
    "WorkflowError",
    "ValidationError",
    "NotFoundError",
    "PermissionDeniedError",
    "AuthenticationError",
    "AccountStatusError",
    "RateLimitError",
    "ConcurrencyError",
    "LockTimeoutError",
    "Mailer",
    "EmailConfig",
    "EmailDeliveryError",
    "render_template",
    "TEMPLATES",
    "IdentityService",
    "hash_password",
    "verify_password",
    "ItemCatalog",
    "ClaimWorkflow",
    "ChatService",
    "FeedbackService",
    "MaintenanceService",
    "MatchingService",
    "MatchingConfig",
    "LlmClient",
    "GeminiClient",
    "similarity_score",
]
