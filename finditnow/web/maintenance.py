"""
Maintenance mode middleware.

While maintenance is on, every request gets 503 with the notice, except
health checks, the maintenance endpoint itself, login/logout, admin routes
and requests from a signed-in administrator.
"""

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from .auth import SESSION_COOKIE, read_session_cookie


EXEMPT_PREFIXES = (
    "/health",
    "/metrics",
    "/docs",
    "/redoc",
    "/openapi.json",
    "/api/maintenance",
    "/api/auth/login",
    "/api/auth/logout",
    "/api/partner/login",
    "/api/admin",
)


def _is_admin_session(request: Request) -> bool:
    user = read_session_cookie(request.cookies.get(SESSION_COOKIE))
    if not user:
        return False
    account = request.app.state.services.identity.get_account(user.account_id)
    return account is not None and account.is_admin and account.is_active


class MaintenanceMiddleware(BaseHTTPMiddleware):

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.url.path.startswith(EXEMPT_PREFIXES):
            return await call_next(request)

        services = request.app.state.services
        config = await run_in_threadpool(services.maintenance.get)
        if not config.is_enabled:
            return await call_next(request)

        if await run_in_threadpool(_is_admin_session, request):
            return await call_next(request)

        return JSONResponse(
            status_code=503,
            content={"maintenance": True, "message": config.message},
            headers={"Retry-After": "300"},
        )
