"""
Demonstration: Complete Claim Lifecycle

A brown wallet is found in Central Park, its owner claims it, the two
parties chat and the finder hands it back.

Runs entirely in memory with email delivery disabled, so the one-time
codes are the fixed development code.

Run with: python -m examples.demo_lifecycle
"""

from datetime import date

from finditnow.core import EmailConfig, Mailer, MatchingConfig, ValidationError
from finditnow.core.identity import FIXED_DEV_OTP
from finditnow.db import InMemoryDocumentStore
from finditnow.schemas import (
    ClaimForm,
    FeedbackForm,
    ItemReport,
    ItemType,
    OtpPurpose,
    SignupRequest,
)
from finditnow.web.shared_store import build_services


def banner(title: str) -> None:
    print("=" * 60)
    print(title)
    print("=" * 60)


def main():
    banner("FindItNow - Claim Lifecycle Demonstration")
    print()

    services = build_services(
        store=InMemoryDocumentStore(),
        mailer=Mailer(EmailConfig(enabled=False)),
        matching_config=MatchingConfig(),
    )

    # ================================================================
    # STEP 0: SIGN UP
    # ================================================================
    banner("STEP 0: SIGN UP")

    accounts = {}
    for email, password in (("finder@example.com", "finder123"), ("owner@example.com", "owner123")):
        services.identity.request_otp(email, OtpPurpose.SIGNUP)
        accounts[email] = services.identity.register_user(
            SignupRequest(email=email, password=password, otp=FIXED_DEV_OTP)
        )
        print(f"[OK] Registered {email}")
    finder = accounts["finder@example.com"]
    owner = accounts["owner@example.com"]
    print()

    # ================================================================
    # STEP 1: REPORT FOUND ITEM
    # ================================================================
    banner("STEP 1: REPORT FOUND ITEM")

    wallet = services.catalog.report_item(finder, ItemReport(
        type=ItemType.FOUND,
        name="Brown Wallet",
        category="wallets",
        description="Brown leather wallet found on a bench near the fountain.",
        distinguishing_marks="Initials J.D. stamped inside",
        location="Central Park",
        date=date(2024, 7, 20),
        contact=finder.email,
    ))
    print(f"[OK] Item reported")
    print(f"   Item ID: {wallet.id}")
    print(f"   Status: {wallet.status.value}")
    print()

    # ================================================================
    # STEP 2: CLAIM SUBMITTED
    # ================================================================
    banner("STEP 2: CLAIM SUBMITTED")

    claim = services.workflow.submit_claim(wallet.id, owner, ClaimForm(
        full_name="Jordan Doe",
        email=owner.email,
        proof="It has my initials J.D. stamped inside and my library card.",
    ))
    print(f"[OK] Claim submitted")
    print(f"   Claim ID: {claim.id}")
    print(f"   Status: {claim.status.value}")
    print(f"   Finder notifications: {services.workflow.notification_count(finder)}")
    print()

    # ================================================================
    # STEP 3: ACCEPTED, CHAT OPENS
    # ================================================================
    banner("STEP 3: ACCEPTED, CHAT OPENS")

    claim = services.workflow.accept_claim(claim.id, finder)
    print(f"[OK] Claim accepted, chat id {claim.chat_id}")

    services.chat.send_message(claim.chat_id, owner, "Is this still available?")
    services.chat.send_message(claim.chat_id, finder, "Yes! I can meet you at the park gate at 5.")
    for message in services.chat.list_messages(claim.chat_id, finder):
        who = "owner " if message.sender_id == owner.id else "finder"
        print(f"   #{message.sequence} {who}: {message.text}")
    print()

    # ================================================================
    # STEP 4: RESOLVED
    # ================================================================
    banner("STEP 4: RESOLVED")

    claim = services.workflow.resolve_claim(claim.id, finder)
    wallet = services.catalog.get_item(wallet.id)
    print(f"[OK] Claim {claim.status.value}, item {wallet.status.value}")

    try:
        services.chat.send_message(claim.chat_id, owner, "Thanks again!")
    except ValidationError as e:
        print(f"[OK] Chat locked: {e}")
    print()

    # ================================================================
    # STEP 5: FEEDBACK
    # ================================================================
    banner("STEP 5: FEEDBACK")

    feedback = services.feedback.submit_feedback(claim.id, finder, FeedbackForm(
        rating=5,
        story="Met at the gate and handed the wallet back. Smooth!",
    ))
    print(f"[OK] Feedback recorded ({feedback.rating}/5)")
    print(f"   Lost by: {feedback.user_name}")
    print(f"   Found by: {feedback.finder_name}")
    print()

    banner("Dashboard")
    for key, value in services.workflow.dashboard_stats().items():
        print(f"   {key}: {value}")


if __name__ == "__main__":
    main()
