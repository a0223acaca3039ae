"""
Shared fixtures and test doubles.

RecordingMailer keeps every message instead of talking to SMTP, so tests
can read the one-time codes the service generated. FakeLlm answers with a
canned response and records the prompts it was given.
"""

import re
import smtplib
from datetime import date, timedelta
from typing import Optional

import pytest

from finditnow.core import EmailConfig, Mailer, MatchingConfig
from finditnow.db import InMemoryDocumentStore
from finditnow.schemas import (
    AccountRole,
    ClaimForm,
    ItemReport,
    ItemType,
    OtpPurpose,
    PartnerSignupRequest,
    SignupRequest,
)
from finditnow.web.shared_store import build_services


_CODE = re.compile(r"\b(\d{6})\b")


class RecordingMailer(Mailer):
    def __init__(self, fail: bool = False):
        super().__init__(EmailConfig(enabled=True, host="smtp.test", sender="noreply@test"))
        self.fail = fail
        self.sent = []

    def _deliver(self, msg) -> None:
        if self.fail:
            raise smtplib.SMTPException("relay down")
        self.sent.append(msg)

    def to(self, email: str) -> list:
        return [m for m in self.sent if m["To"] == email]

    def last_code(self, email: str) -> str:
        for msg in reversed(self.sent):
            if msg["To"] == email:
                match = _CODE.search(msg.get_content())
                if match:
                    return match.group(1)
        raise AssertionError(f"no code was mailed to {email}")


class FakeLlm:
    def __init__(self, response: str = "[]", error: Optional[Exception] = None):
        self.response = response
        self.error = error
        self.prompts: list[str] = []

    def generate(self, prompt: str, temperature: float) -> str:
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        return self.response


@pytest.fixture(autouse=True)
def _session_secret(monkeypatch):
    monkeypatch.setenv("FINDITNOW_SESSION_SECRET", "test-secret-0123456789abcdef")
    monkeypatch.delenv("FINDITNOW_PRODUCTION", raising=False)


@pytest.fixture
def store():
    return InMemoryDocumentStore(lock_timeout=2.0)


@pytest.fixture
def mailer():
    return RecordingMailer()


@pytest.fixture
def llm():
    return FakeLlm()


@pytest.fixture
def services(store, mailer, llm):
    return build_services(
        store=store,
        mailer=mailer,
        matching_config=MatchingConfig(api_key="test-key", max_candidates=50),
        llm_client=llm,
    )


def register(services, email: str, password: str = "secret123", role: AccountRole = AccountRole.USER):
    """Sign up through the real OTP flow, reading the code from the mailer."""
    if role == AccountRole.PARTNER:
        services.identity.request_otp(email, OtpPurpose.PARTNER_SIGNUP)
        return services.identity.register_partner(PartnerSignupRequest(
            email=email,
            password=password,
            otp=services.mailer.last_code(email),
            business_name="Metro Airport Lost & Found",
            business_type="Airport",
        ))
    services.identity.request_otp(email, OtpPurpose.SIGNUP)
    return services.identity.register_user(SignupRequest(
        email=email,
        password=password,
        otp=services.mailer.last_code(email),
    ))


def wallet_report(contact: str, **overrides) -> ItemReport:
    fields = dict(
        type=ItemType.FOUND,
        name="Brown Wallet",
        category="wallets",
        description="Brown leather wallet with a library card inside.",
        distinguishing_marks="Initials J.D. stamped inside",
        location="Central Park",
        date=date(2024, 7, 20),
        contact=contact,
    )
    fields.update(overrides)
    return ItemReport(**fields)


def claim_form(email: str, **overrides) -> ClaimForm:
    fields = dict(
        full_name="Jordan Doe",
        email=email,
        proof="It has my initials J.D. stamped inside and my library card.",
    )
    fields.update(overrides)
    return ClaimForm(**fields)


def days_ago(n: int) -> date:
    return date.today() - timedelta(days=n)


@pytest.fixture
def finder(services):
    return register(services, "finder@example.com")


@pytest.fixture
def owner(services):
    return register(services, "owner@example.com")


@pytest.fixture
def other(services):
    return register(services, "other@example.com")


@pytest.fixture
def partner(services):
    return register(services, "desk@airport.example.com", role=AccountRole.PARTNER)
