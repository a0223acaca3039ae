"""
Auth API Routes

Signup with emailed one-time codes, login, logout and password reset for
users and partners.

Security Features:
- Argon2 password hashing
- Rate limiting on login (5 attempts per 15 minutes per IP)
- Signed session cookies plus a CSRF double-submit cookie
- Suspended and banned accounts are refused with 403 and their status
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, Response

from ..core import AccountStatusError, AuthenticationError
from ..observability import get_logger, get_metrics
from ..schemas import (
    Account,
    AccountRole,
    LoginRequest,
    OtpRequest,
    PartnerSignupRequest,
    PasswordResetRequest,
    SignupRequest,
)
from ..web.auth import (
    SessionUser,
    check_rate_limit,
    clear_rate_limit,
    clear_session_cookie_response,
    get_client_ip,
    record_login_attempt,
    set_session_cookie_response,
)
from ..web.deps import get_current_account, get_services
from ..web.shared_store import Services


router = APIRouter(tags=["Auth"])
logger = get_logger("finditnow.api.auth")


def _login(
    request: Request,
    response: Response,
    body: LoginRequest,
    services: Services,
    required_role: Optional[AccountRole] = None,
) -> dict:
    client_ip = get_client_ip(request)
    is_allowed, retry_after = check_rate_limit(client_ip)
    if not is_allowed:
        logger.warning("Login rate limited", client_ip=client_ip)
        raise HTTPException(
            status_code=429,
            detail=f"Too many login attempts. Try again in {retry_after} seconds.",
            headers={"Retry-After": str(retry_after)},
        )

    # Record before verifying so failures and successes cost the same
    record_login_attempt(client_ip)
    get_metrics().incr("login_attempts")

    try:
        account = services.identity.authenticate(body.email, body.password, required_role)
    except (AuthenticationError, AccountStatusError):
        get_metrics().incr("login_failures")
        logger.warning("Login failed", email=body.email, client_ip=client_ip)
        raise

    clear_rate_limit(client_ip)
    set_session_cookie_response(response, SessionUser(account_id=account.id))
    logger.info("Login succeeded", account_id=account.id, role=account.role.value)
    return {"success": True, "account": account.public()}


def _start_session(response: Response, account: Account) -> dict:
    set_session_cookie_response(response, SessionUser(account_id=account.id))
    return {"success": True, "account": account.public()}


@router.post("/api/auth/otp")
def request_otp(body: OtpRequest, services: Services = Depends(get_services)):
    """Email a 6-digit verification code (valid 10 minutes)."""
    services.identity.request_otp(body.email, body.purpose)
    return {"success": True, "message": "If the address is valid, a code is on its way."}


@router.post("/api/auth/signup", status_code=201)
def signup(body: SignupRequest, response: Response, services: Services = Depends(get_services)):
    account = services.identity.register_user(body)
    return _start_session(response, account)


@router.post("/api/auth/login")
def login(
    request: Request,
    response: Response,
    body: LoginRequest,
    services: Services = Depends(get_services),
):
    return _login(request, response, body, services)


@router.post("/api/auth/logout")
def logout(response: Response):
    clear_session_cookie_response(response)
    return {"success": True}


@router.get("/api/auth/me")
def me(
    account: Account = Depends(get_current_account),
    services: Services = Depends(get_services),
):
    return {
        "account": account.public(),
        "notification_count": services.workflow.notification_count(account),
    }


@router.post("/api/auth/password-reset")
def reset_password(body: PasswordResetRequest, services: Services = Depends(get_services)):
    services.identity.reset_password(body)
    return {"success": True}


@router.post("/api/partner/signup", status_code=201)
def partner_signup(
    body: PartnerSignupRequest,
    response: Response,
    services: Services = Depends(get_services),
):
    account = services.identity.register_partner(body)
    return _start_session(response, account)


@router.post("/api/partner/login")
def partner_login(
    request: Request,
    response: Response,
    body: LoginRequest,
    services: Services = Depends(get_services),
):
    """Same as /api/auth/login, but only partner accounts get in."""
    return _login(request, response, body, services, required_role=AccountRole.PARTNER)
