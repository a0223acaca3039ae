"""
FindItNow - Lost and Found Service

Main application entry point.

Run with:
    uvicorn finditnow.main:app
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import __version__
from .core import (
    AccountStatusError,
    AuthenticationError,
    ConcurrencyError,
    EmailDeliveryError,
    LockTimeoutError,
    NotFoundError,
    PermissionDeniedError,
    RateLimitError,
    ValidationError,
)
from .observability import (
    RequestContextMiddleware,
    check_health,
    get_logger,
    get_metrics,
    setup_logging,
)
from .web.maintenance import MaintenanceMiddleware
from .web.shared_store import Services, bootstrap, build_services


# Setup logging at import time
setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    services: Services = app.state.services
    bootstrap(services)

    logger.info(
        "Application startup complete",
        store_type=type(services.store).__name__,
        items=services.store.count("items"),
        matching_enabled=services.matching.enabled,
        email_enabled=services.mailer.config.enabled,
    )

    yield

    logger.info("Application shutdown complete")


DESCRIPTION = """
## Lost and Found

Report lost or found items, claim them, chat with the other party and close
the loop.

### Claim Lifecycle

```
open → accepted → resolved
open → accepted → resolving → resolved   (partner hand-over)
open → rejected
```

- Only the item owner accepts, rejects or resolves a claim
- Chat opens on accept and becomes read-only once the claim resolves
- Resolving closes every other claim on the item in the same transaction

### Storage Backends

- **InMemoryDocumentStore**: Development/testing (default)
- **PostgresDocumentStore**: Production with full durability

Set `DATABASE_URL` or `DATABASE_HOST` environment variables to use PostgreSQL.
"""


def _error(status_code: int, detail, headers: Optional[dict] = None) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": detail}, headers=headers)


def register_exception_handlers(app: FastAPI) -> None:
    """Map domain errors to HTTP status codes."""

    @app.exception_handler(ValidationError)
    async def _validation(request: Request, exc: ValidationError):
        return _error(400, str(exc))

    @app.exception_handler(NotFoundError)
    async def _not_found(request: Request, exc: NotFoundError):
        return _error(404, str(exc))

    @app.exception_handler(PermissionDeniedError)
    async def _forbidden(request: Request, exc: PermissionDeniedError):
        return _error(403, str(exc))

    @app.exception_handler(AuthenticationError)
    async def _unauthenticated(request: Request, exc: AuthenticationError):
        return _error(401, str(exc))

    @app.exception_handler(AccountStatusError)
    async def _account_status(request: Request, exc: AccountStatusError):
        return _error(403, {"message": str(exc), "status": exc.status})

    @app.exception_handler(RateLimitError)
    async def _rate_limited(request: Request, exc: RateLimitError):
        return _error(429, str(exc))

    @app.exception_handler(ConcurrencyError)
    async def _conflict(request: Request, exc: ConcurrencyError):
        logger.warning("Concurrent modification", path=request.url.path, error=str(exc))
        return _error(409, "This record was changed by someone else. Please reload and try again.")

    @app.exception_handler(LockTimeoutError)
    async def _busy(request: Request, exc: LockTimeoutError):
        logger.warning("Store busy", path=request.url.path, error=str(exc))
        return _error(503, "The service is busy. Please try again.", headers={"Retry-After": "1"})

    @app.exception_handler(EmailDeliveryError)
    async def _email_failed(request: Request, exc: EmailDeliveryError):
        logger.error("Email delivery failed", path=request.url.path, error=str(exc))
        return _error(502, "We could not send the email. Please try again later.")


def create_app(services: Optional[Services] = None) -> FastAPI:
    """
    Build the FastAPI application.

    Services are created eagerly so middleware can reach them before the
    lifespan runs; tests pass their own.
    """
    app = FastAPI(
        title="FindItNow",
        description=DESCRIPTION,
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.state.services = services if services is not None else build_services()

    register_exception_handlers(app)

    # Last added runs first: request context wraps maintenance wraps routes
    app.add_middleware(MaintenanceMiddleware)
    app.add_middleware(RequestContextMiddleware)

    # CORS configuration for the web client in development
    # In production, restrict to your actual domain
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[
            "http://localhost:5173",  # Vite dev server
            "http://127.0.0.1:5173",
            "http://localhost:3000",
            "http://127.0.0.1:3000",
        ],
        allow_credentials=True,  # Required for cookies
        allow_methods=["*"],
        allow_headers=["*"],
    )

    from .api.routes_admin import router as admin_router
    from .api.routes_auth import router as auth_router
    from .api.routes_chat import router as chat_router
    from .api.routes_claims import router as claims_router
    from .api.routes_items import router as items_router
    from .api.routes_matching import router as matching_router
    from .api.routes_partner import router as partner_router
    from .api.routes_public import router as public_router
    app.include_router(public_router)
    app.include_router(auth_router)
    app.include_router(items_router)
    app.include_router(claims_router)
    app.include_router(chat_router)
    app.include_router(matching_router)
    app.include_router(partner_router)
    app.include_router(admin_router)

    @app.get("/health", tags=["System"])
    async def health():
        """
        Basic health check endpoint.

        Returns 200 if the service is running.
        For detailed health, use /health/detailed
        """
        return {"status": "healthy", "service": "finditnow"}

    @app.get("/health/detailed", tags=["System"])
    def health_detailed(request: Request):
        """
        Detailed health check.

        Checks:
        - Service liveness
        - Document store connectivity
        - LLM and email configuration

        Returns 200 if healthy, 503 if unhealthy.
        """
        s: Services = request.app.state.services
        health_status = check_health(store=s.store, matching=s.matching, mailer=s.mailer)

        return JSONResponse(
            status_code=200 if health_status.healthy else 503,
            content={
                "status": "healthy" if health_status.healthy else "unhealthy",
                "checks": health_status.checks,
                "duration_ms": health_status.duration_ms,
            },
        )

    @app.get("/metrics", tags=["System"])
    async def metrics():
        """
        Get application metrics.

        Returns counters and latency percentiles.
        """
        return get_metrics().get_summary()

    @app.get("/api", tags=["System"])
    async def api_info(request: Request):
        """API info for the web client."""
        s: Services = request.app.state.services
        return {
            "name": "FindItNow API",
            "version": __version__,
            "storage_backend": type(s.store).__name__,
            "matching_enabled": s.matching.enabled,
            "endpoints": {
                "auth": {
                    "otp": "/api/auth/otp",
                    "signup": "/api/auth/signup",
                    "login": "/api/auth/login",
                    "logout": "/api/auth/logout",
                    "me": "/api/auth/me",
                    "password_reset": "/api/auth/password-reset",
                },
                "items": {
                    "browse": "/api/items",
                    "detail": "/api/items/{id}",
                    "claims": "/api/items/{id}/claims",
                    "matches": "/api/items/{id}/matches",
                },
                "claims": {
                    "detail": "/api/claims/{id}",
                    "accept": "/api/claims/{id}/accept",
                    "reject": "/api/claims/{id}/reject",
                    "resolve": "/api/claims/{id}/resolve",
                    "confirm": "/api/claims/{id}/confirm",
                    "feedback": "/api/claims/{id}/feedback",
                },
                "chat": {
                    "state": "/api/chats/{id}",
                    "messages": "/api/chats/{id}/messages",
                    "stream": "/api/chats/{id}/stream",
                },
                "partner": {
                    "signup": "/api/partner/signup",
                    "login": "/api/partner/login",
                    "dashboard": "/api/partner/dashboard",
                },
                "admin": "/api/admin",
            },
        }

    return app


app = create_app()
