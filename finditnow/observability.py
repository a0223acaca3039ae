"""
Observability Module - Logging, Metrics, and Health

Provides:
- Structured JSON logging with request IDs
- Request/response logging middleware
- Metrics collection (requests, claims, messages, matching calls)
- Health check utilities

Configuration:
- FINDITNOW_LOG_LEVEL: DEBUG, INFO, WARNING, ERROR (default: INFO)
- FINDITNOW_LOG_FORMAT: json, text (default: json in production)
- FINDITNOW_PRODUCTION: Enable production mode

Usage:
    from finditnow.observability import get_logger

    logger = get_logger(__name__)
    logger.info("Claim accepted", claim_id=claim.id, item_id=claim.item_id)
"""

import json
import logging
import os
import sys
import time
import uuid
from contextvars import ContextVar
from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import Lock
from typing import Any, Dict, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

# Context variables for request tracking
request_id_var: ContextVar[str] = ContextVar("request_id", default="")
account_id_var: ContextVar[str] = ContextVar("account_id", default="")


# ============================================================
# CONFIGURATION
# ============================================================

def is_production() -> bool:
    return os.environ.get("FINDITNOW_PRODUCTION", "").lower() in ("1", "true", "yes")


def _get_log_level() -> int:
    level_str = os.environ.get("FINDITNOW_LOG_LEVEL", "INFO").upper()
    return logging.getLevelName(level_str) if level_str in (
        "DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"
    ) else logging.INFO


def _use_json_logging() -> bool:
    format_str = os.environ.get("FINDITNOW_LOG_FORMAT", "").lower()
    if format_str == "json":
        return True
    if format_str == "text":
        return False
    return is_production()


# ============================================================
# STRUCTURED LOGGING
# ============================================================

_RESERVED_RECORD_KEYS = frozenset(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__.keys()
) | {"message", "asctime"}


class StructuredFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.

    Output format:
    {
        "timestamp": "2024-07-20T10:30:00.000Z",
        "level": "INFO",
        "logger": "finditnow.workflow",
        "message": "Claim accepted",
        "request_id": "abc-123",
        "account_id": "uuid-456",
        "claim_id": "uuid-789",
        ...extra fields...
    }
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        request_id = request_id_var.get()
        if request_id:
            log_data["request_id"] = request_id

        account_id = account_id_var.get()
        if account_id:
            log_data["account_id"] = account_id

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key in _RESERVED_RECORD_KEYS or key.startswith("_"):
                continue
            try:
                json.dumps(value)
                log_data[key] = value
            except (TypeError, ValueError):
                log_data[key] = str(value)

        return json.dumps(log_data)


class TextFormatter(logging.Formatter):
    """Human-readable formatter for development."""

    def format(self, record: logging.LogRecord) -> str:
        prefix = ""
        request_id = request_id_var.get()
        if request_id:
            prefix = f"[{request_id[:8]}] "

        timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
        msg = f"{timestamp} {record.levelname:8} {prefix}{record.name}: {record.getMessage()}"

        extras = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _RESERVED_RECORD_KEYS and not key.startswith("_")
        }
        if extras:
            msg += " " + " ".join(f"{k}={v}" for k, v in extras.items())

        if record.exc_info:
            msg += "\n" + self.formatException(record.exc_info)

        return msg


class ContextLogger(logging.LoggerAdapter):
    """
    Logger adapter that accepts structured fields as keyword arguments.

    Usage:
        logger = get_logger(__name__)
        logger.info("Item reported", item_id=item.id, type="found")
    """

    def process(self, msg: str, kwargs: Dict[str, Any]) -> tuple:
        extra = kwargs.get("extra", {})

        for key in list(kwargs.keys()):
            if key not in ("exc_info", "stack_info", "stacklevel", "extra"):
                extra[key] = kwargs.pop(key)

        kwargs["extra"] = extra
        return msg, kwargs


def get_logger(name: str) -> ContextLogger:
    """Get a structured logger for the given name."""
    return ContextLogger(logging.getLogger(name), {})


def setup_logging() -> None:
    """
    Configure logging for the application.

    Call this once at application startup.
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(_get_log_level())

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(_get_log_level())
    handler.setFormatter(StructuredFormatter() if _use_json_logging() else TextFormatter())
    root_logger.addHandler(handler)

    # Suppress noisy loggers
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


# ============================================================
# REQUEST CONTEXT MIDDLEWARE
# ============================================================

class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    Middleware that sets up request context for logging.

    - Generates a request ID (or honors X-Request-ID)
    - Tags log lines with the signed-in account id
    - Logs each request with timing and records it in the metrics
    """

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint
    ) -> Response:
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4())[:8])
        request_id_var.set(request_id)

        from finditnow.web.auth import SESSION_COOKIE, read_session_cookie
        cookie_val = request.cookies.get(SESSION_COOKIE)
        if cookie_val:
            session = read_session_cookie(cookie_val)
            if session:
                account_id_var.set(session.account_id)

        logger = get_logger("finditnow.request")
        start_time = time.perf_counter()

        try:
            response = await call_next(request)

            duration_ms = (time.perf_counter() - start_time) * 1000
            log_level = logging.INFO if response.status_code < 400 else logging.WARNING
            logger.log(
                log_level,
                f"{request.method} {request.url.path} -> {response.status_code}",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration_ms=round(duration_ms, 2),
            )
            get_metrics().record_request(duration_ms, success=response.status_code < 500)

            response.headers["X-Request-ID"] = request_id
            return response

        except Exception as e:
            duration_ms = (time.perf_counter() - start_time) * 1000
            logger.exception(
                f"{request.method} {request.url.path} -> 500",
                method=request.method,
                path=request.url.path,
                status_code=500,
                duration_ms=round(duration_ms, 2),
                error=str(e),
            )
            get_metrics().record_request(duration_ms, success=False)
            raise

        finally:
            request_id_var.set("")
            account_id_var.set("")


# ============================================================
# METRICS
# ============================================================

@dataclass
class MetricsCollector:
    """
    Simple in-memory metrics collector.

    For production, replace with Prometheus, StatsD, or similar.
    """

    # Counters
    requests_total: int = 0
    requests_failed: int = 0
    login_attempts: int = 0
    login_failures: int = 0
    items_reported: int = 0
    claims_submitted: int = 0
    claims_resolved: int = 0
    messages_sent: int = 0
    llm_calls: int = 0
    llm_failures: int = 0
    emails_sent: int = 0
    emails_failed: int = 0

    # Histograms (simplified as lists)
    request_latencies_ms: list = field(default_factory=list)
    llm_latencies_ms: list = field(default_factory=list)

    _lock: Lock = field(default_factory=Lock, repr=False)

    def incr(self, counter: str, amount: int = 1) -> None:
        with self._lock:
            setattr(self, counter, getattr(self, counter) + amount)

    def record_request(self, latency_ms: float, success: bool) -> None:
        with self._lock:
            self.requests_total += 1
            if not success:
                self.requests_failed += 1
            self.request_latencies_ms.append(latency_ms)
            # Keep only last 1000 samples
            self.request_latencies_ms = self.request_latencies_ms[-1000:]

    def record_llm_call(self, latency_ms: float, success: bool) -> None:
        with self._lock:
            self.llm_calls += 1
            if not success:
                self.llm_failures += 1
            self.llm_latencies_ms.append(latency_ms)
            self.llm_latencies_ms = self.llm_latencies_ms[-1000:]

    def get_summary(self) -> Dict[str, Any]:
        def percentile(data: list, p: float) -> Optional[float]:
            if not data:
                return None
            sorted_data = sorted(data)
            idx = int(len(sorted_data) * p)
            return sorted_data[min(idx, len(sorted_data) - 1)]

        with self._lock:
            return {
                "requests_total": self.requests_total,
                "requests_failed": self.requests_failed,
                "login_attempts": self.login_attempts,
                "login_failures": self.login_failures,
                "items_reported": self.items_reported,
                "claims_submitted": self.claims_submitted,
                "claims_resolved": self.claims_resolved,
                "messages_sent": self.messages_sent,
                "llm_calls": self.llm_calls,
                "llm_failures": self.llm_failures,
                "emails_sent": self.emails_sent,
                "emails_failed": self.emails_failed,
                "request_latency_p50_ms": percentile(self.request_latencies_ms, 0.5),
                "request_latency_p95_ms": percentile(self.request_latencies_ms, 0.95),
                "llm_latency_p50_ms": percentile(self.llm_latencies_ms, 0.5),
                "llm_latency_p95_ms": percentile(self.llm_latencies_ms, 0.95),
            }


# Global metrics instance
_metrics = MetricsCollector()


def get_metrics() -> MetricsCollector:
    """Get the global metrics collector."""
    return _metrics


# ============================================================
# HEALTH CHECKS
# ============================================================

@dataclass
class HealthStatus:
    """Health check result."""
    healthy: bool
    checks: Dict[str, Dict[str, Any]]
    duration_ms: float


def check_health(store=None, matching=None, mailer=None) -> HealthStatus:
    """
    Run all health checks.

    Only the store can make the service unhealthy; the LLM and email
    entries report configuration so operators can see degraded features.
    """
    start = time.perf_counter()
    checks = {}
    all_healthy = True

    checks["liveness"] = {"status": "healthy"}

    if store is not None:
        try:
            ok = store.ping()
            checks["store"] = {
                "status": "healthy" if ok else "unhealthy",
                "backend": type(store).__name__,
                "items": store.count("items"),
            }
            all_healthy = all_healthy and ok
        except Exception as e:
            checks["store"] = {"status": "unhealthy", "error": str(e)}
            all_healthy = False

    if matching is not None:
        checks["matching"] = {
            "status": "healthy" if matching.enabled else "disabled",
            "model": matching.config.model,
        }

    if mailer is not None:
        checks["email"] = {
            "status": "healthy" if mailer.config.enabled else "disabled",
            "host": mailer.config.host if mailer.config.enabled else None,
        }

    duration_ms = (time.perf_counter() - start) * 1000

    return HealthStatus(
        healthy=all_healthy,
        checks=checks,
        duration_ms=round(duration_ms, 2),
    )
