"""
Dependency injection for API routes.

The session cookie only names an account; role and status are always
re-read from the store, never trusted from the cookie.
"""

from typing import Optional

from fastapi import Depends, HTTPException, Request

from ..schemas import Account
from .auth import (
    CSRF_COOKIE,
    CSRF_HEADER,
    SESSION_COOKIE,
    read_session_cookie,
    validate_csrf_token,
)
from .shared_store import Services


SAFE_METHODS = ("GET", "HEAD", "OPTIONS")


def get_services(request: Request) -> Services:
    """Get the shared services from app state."""
    return request.app.state.services


def get_optional_account(
    request: Request,
    services: Services = Depends(get_services),
) -> Optional[Account]:
    user = read_session_cookie(request.cookies.get(SESSION_COOKIE))
    if not user:
        return None
    return services.identity.get_account(user.account_id)


def get_current_account(
    request: Request,
    services: Services = Depends(get_services),
) -> Account:
    """
    Require a signed-in, active account.

    State-changing requests must also echo the CSRF cookie in X-CSRF-Token.
    """
    user = read_session_cookie(request.cookies.get(SESSION_COOKIE))
    if not user:
        raise HTTPException(status_code=401, detail="Not logged in")

    account = services.identity.get_account(user.account_id)
    if account is None:
        raise HTTPException(status_code=401, detail="Account not found")
    if not account.is_active:
        raise HTTPException(
            status_code=403,
            detail={"message": f"Account is {account.status.value}", "status": account.status.value},
        )

    if request.method not in SAFE_METHODS:
        if not validate_csrf_token(request.cookies.get(CSRF_COOKIE), request.headers.get(CSRF_HEADER)):
            raise HTTPException(status_code=403, detail="Missing or invalid CSRF token")

    return account


def require_partner(account: Account = Depends(get_current_account)) -> Account:
    if not account.is_partner:
        raise HTTPException(status_code=403, detail="Partner account required")
    return account


def require_admin(account: Account = Depends(get_current_account)) -> Account:
    """Require the admin role stored on the account."""
    if not account.is_admin:
        raise HTTPException(status_code=403, detail="Admin role required")
    return account
