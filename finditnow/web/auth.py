"""
Session, rate limiting and CSRF helpers.

Security Features:
- Signed session cookies (itsdangerous) carrying only the account id
- Rate limiting on login attempts
- Production-ready cookie settings
- CSRF double-submit token issued with the session

For production:
- Set FINDITNOW_SESSION_SECRET to a 32+ character random string
- Set FINDITNOW_PRODUCTION=1 for secure cookie settings
"""

import os
import secrets
import time
import warnings
from collections import defaultdict
from dataclasses import dataclass
from threading import Lock
from typing import Optional, Tuple

from itsdangerous import BadSignature, URLSafeTimedSerializer

from ..observability import is_production


# ============================================================
# CONFIGURATION
# ============================================================

SESSION_COOKIE = "fin_session"
CSRF_COOKIE = "fin_csrf"
CSRF_HEADER = "X-CSRF-Token"

SESSION_MAX_AGE_SECONDS = 86400 * 7  # 7 days

# Rate limiting: max 5 attempts per 15 minutes per IP
RATE_LIMIT_MAX_ATTEMPTS = 5
RATE_LIMIT_WINDOW_SECONDS = 15 * 60


# ============================================================
# RATE LIMITING
# ============================================================

# In-memory rate limit storage (use Redis for multi-server deployments)
_rate_limit_attempts: dict[str, list[float]] = defaultdict(list)
_rate_limit_lock = Lock()


def _clean_old_attempts(ip: str) -> None:
    cutoff = time.time() - RATE_LIMIT_WINDOW_SECONDS
    _rate_limit_attempts[ip] = [t for t in _rate_limit_attempts[ip] if t > cutoff]


def check_rate_limit(ip: str) -> Tuple[bool, int]:
    """
    Check if an IP is rate limited.

    Returns:
        Tuple of (is_allowed, retry_after_seconds)
    """
    with _rate_limit_lock:
        _clean_old_attempts(ip)
        attempts = _rate_limit_attempts[ip]

        if len(attempts) >= RATE_LIMIT_MAX_ATTEMPTS:
            retry_after = int(RATE_LIMIT_WINDOW_SECONDS - (time.time() - min(attempts)))
            return False, max(1, retry_after)

        return True, 0


def record_login_attempt(ip: str) -> None:
    with _rate_limit_lock:
        _rate_limit_attempts[ip].append(time.time())


def clear_rate_limit(ip: str) -> None:
    """Clear rate limit on successful login."""
    with _rate_limit_lock:
        _rate_limit_attempts.pop(ip, None)


# ============================================================
# SESSION COOKIES
# ============================================================

_DEV_SECRET = "dev-insecure-secret-do-not-use-in-production-12345678"


def _serializer() -> URLSafeTimedSerializer:
    secret = os.environ.get("FINDITNOW_SESSION_SECRET", "")
    if not secret or len(secret) < 16:
        if is_production():
            raise RuntimeError(
                "FINDITNOW_SESSION_SECRET must be set in production. "
                "Generate with: python -c \"import secrets; print(secrets.token_urlsafe(32))\""
            )
        warnings.warn(
            "FINDITNOW_SESSION_SECRET not set. Using insecure default.",
            stacklevel=2,
        )
        secret = _DEV_SECRET
    return URLSafeTimedSerializer(secret_key=secret, salt="finditnow-session-v1")


@dataclass(frozen=True)
class SessionUser:
    account_id: str


def create_session_cookie(user: SessionUser) -> str:
    return _serializer().dumps({"aid": user.account_id})


def read_session_cookie(cookie_value: Optional[str]) -> Optional[SessionUser]:
    if not cookie_value:
        return None
    try:
        data = _serializer().loads(cookie_value, max_age=SESSION_MAX_AGE_SECONDS)
        return SessionUser(account_id=str(data["aid"]))
    except (BadSignature, KeyError, TypeError):
        return None


def clear_session_cookie_response(resp):
    resp.delete_cookie(SESSION_COOKIE, path="/")
    resp.delete_cookie(CSRF_COOKIE, path="/")
    return resp


def set_session_cookie_response(resp, user: SessionUser):
    """Set session and CSRF cookies with the right security settings."""
    is_prod = is_production()

    resp.set_cookie(
        key=SESSION_COOKIE,
        value=create_session_cookie(user),
        httponly=True,
        samesite="strict" if is_prod else "lax",
        secure=is_prod,  # HTTPS only in production
        path="/",
        max_age=SESSION_MAX_AGE_SECONDS,
    )

    # Readable by JavaScript, echoed back in the X-CSRF-Token header
    resp.set_cookie(
        key=CSRF_COOKIE,
        value=generate_csrf_token(),
        httponly=False,
        samesite="strict" if is_prod else "lax",
        secure=is_prod,
        path="/",
        max_age=SESSION_MAX_AGE_SECONDS,
    )

    return resp


# ============================================================
# CSRF PROTECTION
# ============================================================

def generate_csrf_token() -> str:
    return secrets.token_urlsafe(32)


def validate_csrf_token(cookie_token: Optional[str], header_token: Optional[str]) -> bool:
    """The token in the cookie must match the token in the header."""
    if not cookie_token or not header_token:
        return False
    return secrets.compare_digest(cookie_token, header_token)


# ============================================================
# UTILITY FUNCTIONS
# ============================================================

def get_client_ip(request) -> str:
    """Extract client IP from request (handles proxies)."""
    forwarded = request.headers.get("X-Forwarded-For", "")
    if forwarded:
        return forwarded.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP", "")
    if real_ip:
        return real_ip

    if request.client:
        return request.client.host

    return "unknown"
