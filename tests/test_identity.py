"""
Tests for accounts: one-time codes, signup, login and moderation.
"""

from datetime import datetime, timedelta, timezone

import pytest

from finditnow.core import (
    AccountStatusError,
    AuthenticationError,
    EmailConfig,
    EmailDeliveryError,
    IdentityService,
    Mailer,
    PermissionDeniedError,
    ValidationError,
    hash_password,
    verify_password,
)
from finditnow.core.identity import FIXED_DEV_OTP, OTP_CHALLENGES, OTP_MAX_ATTEMPTS
from finditnow.db import InMemoryDocumentStore
from finditnow.schemas import (
    AccountRole,
    AccountStatus,
    OtpPurpose,
    PartnerSignupRequest,
    PasswordResetRequest,
    SignupRequest,
)


class TestPasswords:

    def test_argon2_roundtrip(self):
        hashed = hash_password("secret123")
        assert hashed.startswith("$argon2")
        assert verify_password("secret123", hashed)
        assert not verify_password("wrong", hashed)

    def test_garbage_hash_does_not_verify(self):
        assert not verify_password("secret123", "not-a-hash")


class TestOtpSignup:

    @pytest.fixture
    def identity(self, services):
        return services.identity

    def test_signup_with_mailed_code(self, identity, mailer):
        identity.request_otp("New.User@Example.com ", OtpPurpose.SIGNUP)
        code = mailer.last_code("new.user@example.com")

        account = identity.register_user(
            SignupRequest(email="new.user@example.com", password="secret123", otp=code)
        )

        assert account.email == "new.user@example.com"
        assert account.role == AccountRole.USER
        assert account.status == AccountStatus.ACTIVE
        assert account.password_hash != "secret123"

    def test_code_is_single_use(self, identity, mailer):
        identity.request_otp("a@example.com", OtpPurpose.SIGNUP)
        code = mailer.last_code("a@example.com")
        identity.register_user(SignupRequest(email="a@example.com", password="secret123", otp=code))

        with pytest.raises(ValidationError):
            identity.register_user(SignupRequest(email="a@example.com", password="secret123", otp=code))

    def test_existing_email_cannot_request_signup_code(self, identity, finder):
        with pytest.raises(ValidationError, match="already exists"):
            identity.request_otp(finder.email, OtpPurpose.SIGNUP)

    def test_wrong_code_counts_attempts(self, identity, mailer, store):
        identity.request_otp("a@example.com", OtpPurpose.SIGNUP)
        code = mailer.last_code("a@example.com")
        wrong = "000000" if code != "000000" else "111111"

        with pytest.raises(AuthenticationError, match="Invalid"):
            identity.register_user(SignupRequest(email="a@example.com", password="secret123", otp=wrong))

        challenge = store.get(OTP_CHALLENGES, "signup:a@example.com")
        assert challenge["attempts"] == 1

        # Still usable with the right code
        identity.register_user(SignupRequest(email="a@example.com", password="secret123", otp=code))

    def test_too_many_attempts_burns_the_code(self, identity, mailer, store):
        identity.request_otp("a@example.com", OtpPurpose.SIGNUP)
        code = mailer.last_code("a@example.com")
        wrong = "000000" if code != "000000" else "111111"

        for _ in range(OTP_MAX_ATTEMPTS):
            with pytest.raises(AuthenticationError):
                identity.register_user(SignupRequest(email="a@example.com", password="secret123", otp=wrong))

        assert store.get(OTP_CHALLENGES, "signup:a@example.com") is None
        with pytest.raises(AuthenticationError, match="No verification code"):
            identity.register_user(SignupRequest(email="a@example.com", password="secret123", otp=code))

    def test_expired_code(self, identity, mailer, store):
        identity.request_otp("a@example.com", OtpPurpose.SIGNUP)
        code = mailer.last_code("a@example.com")

        with store.begin_batch() as ctx:
            doc = ctx.get(OTP_CHALLENGES, "signup:a@example.com")
            past = datetime.now(timezone.utc) - timedelta(minutes=1)
            ctx.update(OTP_CHALLENGES, dict(doc, expires_at=past.isoformat()), expected_version=doc["version"])
            ctx.commit()

        with pytest.raises(AuthenticationError, match="expired"):
            identity.register_user(SignupRequest(email="a@example.com", password="secret123", otp=code))

    def test_codes_are_scoped_by_purpose(self, identity, mailer):
        identity.request_otp("biz@example.com", OtpPurpose.SIGNUP)
        code = mailer.last_code("biz@example.com")

        with pytest.raises(AuthenticationError):
            identity.register_partner(PartnerSignupRequest(
                email="biz@example.com",
                password="secret123",
                otp=code,
                business_name="Harbor Hotel",
                business_type="Hotel",
            ))

    def test_partner_signup(self, partner):
        assert partner.role == AccountRole.PARTNER
        assert partner.is_partner
        assert partner.display_name == "Metro Airport Lost & Found"

    def test_disabled_mail_uses_fixed_code(self):
        identity = IdentityService(InMemoryDocumentStore(), Mailer(EmailConfig(enabled=False)))
        identity.request_otp("dev@example.com", OtpPurpose.SIGNUP)

        account = identity.register_user(
            SignupRequest(email="dev@example.com", password="secret123", otp=FIXED_DEV_OTP)
        )
        assert account.email == "dev@example.com"

    def test_delivery_failure_is_reported(self, identity, mailer):
        mailer.fail = True
        with pytest.raises(EmailDeliveryError):
            identity.request_otp("a@example.com", OtpPurpose.SIGNUP)


class TestPasswordReset:

    def test_reset_with_code(self, services, finder, mailer):
        services.identity.request_otp(finder.email, OtpPurpose.PASSWORD_RESET)
        code = mailer.last_code(finder.email)

        services.identity.reset_password(
            PasswordResetRequest(email=finder.email, password="brand-new-pass", otp=code)
        )

        assert services.identity.authenticate(finder.email, "brand-new-pass").id == finder.id
        with pytest.raises(AuthenticationError):
            services.identity.authenticate(finder.email, "secret123")

    def test_unknown_email_is_silent(self, services, mailer):
        services.identity.request_otp("ghost@example.com", OtpPurpose.PASSWORD_RESET)
        assert mailer.to("ghost@example.com") == []


class TestAuthentication:

    def test_login(self, services, finder):
        assert services.identity.authenticate("FINDER@example.com", "secret123").id == finder.id

    def test_bad_password(self, services, finder):
        with pytest.raises(AuthenticationError):
            services.identity.authenticate(finder.email, "nope")

    def test_unknown_email(self, services):
        with pytest.raises(AuthenticationError):
            services.identity.authenticate("ghost@example.com", "secret123")

    def test_partner_login_requires_partner_role(self, services, finder, partner):
        assert services.identity.authenticate(
            partner.email, "secret123", required_role=AccountRole.PARTNER
        ).id == partner.id
        with pytest.raises(AuthenticationError, match="partner"):
            services.identity.authenticate(finder.email, "secret123", required_role=AccountRole.PARTNER)

    def test_suspended_account_is_refused_with_status(self, services, finder):
        admin = services.identity.ensure_admin("admin@example.com", "admin-pass")
        services.identity.set_status(admin, finder.id, AccountStatus.SUSPENDED)

        with pytest.raises(AccountStatusError) as exc_info:
            services.identity.authenticate(finder.email, "secret123")
        assert exc_info.value.status == "suspended"


class TestAdministration:

    def test_ensure_admin_creates_then_promotes(self, services, finder):
        created = services.identity.ensure_admin("admin@example.com", "admin-pass")
        assert created.is_admin

        promoted = services.identity.ensure_admin(finder.email, "another-pass")
        assert promoted.id == finder.id
        assert promoted.is_admin
        assert services.identity.authenticate(finder.email, "another-pass").is_admin

    def test_admin_password_length(self, services):
        with pytest.raises(ValidationError):
            services.identity.ensure_admin("admin@example.com", "123")

    def test_admin_cannot_change_own_status(self, services):
        admin = services.identity.ensure_admin("admin@example.com", "admin-pass")
        with pytest.raises(PermissionDeniedError):
            services.identity.set_status(admin, admin.id, AccountStatus.BANNED)

    def test_only_admins_change_status(self, services, finder, owner):
        with pytest.raises(PermissionDeniedError):
            services.identity.set_status(finder, owner.id, AccountStatus.BANNED)

    def test_list_accounts_search(self, services, finder, partner):
        assert {a.id for a in services.identity.list_accounts()} == {finder.id, partner.id}
        assert [a.id for a in services.identity.list_accounts("airport")] == [partner.id]
