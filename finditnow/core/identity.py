"""
Identity Service

Accounts, passwords and one-time codes.

Security properties:
- Argon2id password hashing (argon2-cffi defaults)
- One-time codes are stored only as SHA-256 digests, expire after
  10 minutes and allow 5 attempts
- Roles and statuses are stored on the account; the session cookie only
  carries the account id
"""

import hashlib
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional
from uuid import uuid4

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHash, VerificationError, VerifyMismatchError

from ..db.store import BatchContext, DocumentStore
from ..observability import get_logger
from ..schemas import (
    Account,
    AccountRole,
    AccountStatus,
    OtpChallenge,
    OtpPurpose,
    PartnerSignupRequest,
    PasswordResetRequest,
    SignupRequest,
    normalize_email,
)
from ..schemas.account import MIN_PASSWORD_LENGTH
from .errors import (
    AccountStatusError,
    AuthenticationError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from .mailer import Mailer


logger = get_logger("finditnow.identity")

ACCOUNTS = "accounts"
OTP_CHALLENGES = "otp_challenges"

OTP_TTL = timedelta(minutes=10)
OTP_MAX_ATTEMPTS = 5

# Used when email delivery is disabled so local signups still work
FIXED_DEV_OTP = "123456"

OTP_TEMPLATES = {
    OtpPurpose.SIGNUP: "user-otp",
    OtpPurpose.PARTNER_SIGNUP: "partner-otp",
    OtpPurpose.PASSWORD_RESET: "password-otp",
}


# ============================================================
# PASSWORD HASHING
# ============================================================

# Argon2 hasher with library defaults (argon2id)
_argon2_hasher = PasswordHasher()


def hash_password(password: str) -> str:
    """Hash a password using Argon2id. The result embeds salt and parameters."""
    return _argon2_hasher.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return _argon2_hasher.verify(password_hash, password)
    except (VerifyMismatchError, VerificationError, InvalidHash):
        return False


def _hash_code(code: str) -> str:
    return hashlib.sha256(code.encode("utf-8")).hexdigest()


def _now() -> datetime:
    return datetime.now(timezone.utc)


class IdentityService:
    """
    Owns the accounts and otp_challenges collections.
    """

    def __init__(self, store: DocumentStore, mailer: Mailer):
        self._store = store
        self._mailer = mailer

    # ----------------------------------------------------------------
    # Lookups
    # ----------------------------------------------------------------

    def get_account(self, account_id: str) -> Optional[Account]:
        doc = self._store.get(ACCOUNTS, account_id)
        return Account.model_validate(doc) if doc else None

    def get_by_email(self, email: str) -> Optional[Account]:
        docs = self._store.find(ACCOUNTS, email=email.strip().lower())
        return Account.model_validate(docs[0]) if docs else None

    def list_accounts(self, search: Optional[str] = None) -> list[Account]:
        """All accounts, newest first, optionally filtered by email or business name."""
        accounts = [Account.model_validate(d) for d in self._store.find(ACCOUNTS)]
        if search:
            term = search.strip().lower()
            accounts = [
                a for a in accounts
                if term in a.email or term in (a.business_name or "").lower()
            ]
        return sorted(accounts, key=lambda a: a.created_at, reverse=True)

    # ----------------------------------------------------------------
    # One-time codes
    # ----------------------------------------------------------------

    def request_otp(self, email: str, purpose: OtpPurpose) -> None:
        """
        Issue a fresh code for (email, purpose) and email it.

        A new request replaces any pending code. Password reset requests for
        unknown emails are accepted silently so the endpoint cannot be used
        to probe which addresses are registered.

        Raises:
            ValidationError: signup for an email that is already registered
            EmailDeliveryError: the code could not be sent
        """
        email = normalize_email(email)
        existing = self.get_by_email(email)

        if purpose in (OtpPurpose.SIGNUP, OtpPurpose.PARTNER_SIGNUP) and existing:
            raise ValidationError("An account with this email already exists.")
        if purpose == OtpPurpose.PASSWORD_RESET and existing is None:
            logger.info("Password reset requested for unknown email", email=email)
            return

        code = FIXED_DEV_OTP if not self._mailer.config.enabled else f"{secrets.randbelow(10**6):06d}"
        challenge = OtpChallenge(
            id=f"{purpose.value}:{email}",
            email=email,
            purpose=purpose,
            code_hash=_hash_code(code),
            expires_at=_now() + OTP_TTL,
        )

        with self._store.begin_batch() as ctx:
            current = ctx.get(OTP_CHALLENGES, challenge.id)
            doc = challenge.model_dump(mode="json")
            if current is None:
                ctx.insert(OTP_CHALLENGES, doc)
            else:
                ctx.update(OTP_CHALLENGES, doc, expected_version=current["version"])
            ctx.commit()

        self._mailer.send(OTP_TEMPLATES[purpose], email, otp=code)
        logger.info("OTP issued", email=email, purpose=purpose.value)

    def _consume_otp(
        self,
        ctx: BatchContext,
        email: str,
        purpose: OtpPurpose,
        code: str,
    ) -> Optional[str]:
        """
        Check a code inside a batch.

        Returns an error message, or None when the code matched and the
        challenge was consumed. A wrong code bumps the attempt counter; the
        caller must commit the batch either way.
        """
        challenge_id = f"{purpose.value}:{email}"
        doc = ctx.get(OTP_CHALLENGES, challenge_id)
        if doc is None:
            return "No verification code was requested for this email."

        challenge = OtpChallenge.model_validate(doc)
        if challenge.expires_at <= _now():
            ctx.delete(OTP_CHALLENGES, challenge_id)
            return "The verification code has expired. Please request a new one."

        if not secrets.compare_digest(challenge.code_hash, _hash_code(code)):
            attempts = challenge.attempts + 1
            if attempts >= OTP_MAX_ATTEMPTS:
                ctx.delete(OTP_CHALLENGES, challenge_id)
                return "Too many incorrect attempts. Please request a new code."
            ctx.update(
                OTP_CHALLENGES,
                dict(doc, attempts=attempts),
                expected_version=challenge.version,
            )
            return "Invalid verification code."

        ctx.delete(OTP_CHALLENGES, challenge_id)
        return None

    # ----------------------------------------------------------------
    # Registration
    # ----------------------------------------------------------------

    def _register(
        self,
        request: SignupRequest,
        purpose: OtpPurpose,
        role: AccountRole,
        business_name: Optional[str] = None,
        business_type: Optional[str] = None,
    ) -> Account:
        with self._store.begin_batch() as ctx:
            if ctx.find(ACCOUNTS, email=request.email):
                raise ValidationError("An account with this email already exists.")

            error = self._consume_otp(ctx, request.email, purpose, request.otp)
            if error:
                ctx.commit()
                raise AuthenticationError(error)

            account = Account(
                id=str(uuid4()),
                email=request.email,
                password_hash=hash_password(request.password),
                role=role,
                created_at=_now(),
                business_name=business_name,
                business_type=business_type,
            )
            stored = ctx.insert(ACCOUNTS, account.model_dump(mode="json"))
            ctx.commit()

        logger.info("Account registered", account_id=account.id, role=role.value)
        return Account.model_validate(stored)

    def register_user(self, request: SignupRequest) -> Account:
        """
        Create a user account after verifying the signup code.

        Raises:
            ValidationError: email already registered
            AuthenticationError: code missing, wrong or expired
        """
        return self._register(request, OtpPurpose.SIGNUP, AccountRole.USER)

    def register_partner(self, request: PartnerSignupRequest) -> Account:
        return self._register(
            request,
            OtpPurpose.PARTNER_SIGNUP,
            AccountRole.PARTNER,
            business_name=request.business_name.strip(),
            business_type=request.business_type.strip(),
        )

    def reset_password(self, request: PasswordResetRequest) -> None:
        with self._store.begin_batch() as ctx:
            docs = ctx.find(ACCOUNTS, email=request.email)
            if not docs:
                raise AuthenticationError("Invalid verification code.")

            error = self._consume_otp(ctx, request.email, OtpPurpose.PASSWORD_RESET, request.otp)
            if error:
                ctx.commit()
                raise AuthenticationError(error)

            account = docs[0]
            ctx.update(
                ACCOUNTS,
                dict(account, password_hash=hash_password(request.password)),
                expected_version=account["version"],
            )
            ctx.commit()

        logger.info("Password reset", account_id=account["id"])

    # ----------------------------------------------------------------
    # Authentication
    # ----------------------------------------------------------------

    def authenticate(
        self,
        email: str,
        password: str,
        required_role: Optional[AccountRole] = None,
    ) -> Account:
        """
        Verify credentials.

        Raises:
            AuthenticationError: unknown email, wrong password or wrong role
            AccountStatusError: the account is suspended or banned
        """
        account = self.get_by_email(email)
        if account is None or not verify_password(password, account.password_hash):
            raise AuthenticationError("Invalid email or password.")

        if required_role is not None and account.role != required_role:
            raise AuthenticationError(f"This is not a {required_role.value} account.")

        if not account.is_active:
            raise AccountStatusError(account.status.value)

        return account

    # ----------------------------------------------------------------
    # Administration
    # ----------------------------------------------------------------

    def ensure_admin(self, email: str, password: str) -> Account:
        """
        Create or promote the administrator account for email.

        An existing account is promoted, reactivated and gets the new password.
        """
        email = normalize_email(email)
        if len(password) < MIN_PASSWORD_LENGTH:
            raise ValidationError(
                f"Admin password must be at least {MIN_PASSWORD_LENGTH} characters."
            )

        with self._store.begin_batch() as ctx:
            docs = ctx.find(ACCOUNTS, email=email)
            if docs:
                current = docs[0]
                stored = ctx.update(
                    ACCOUNTS,
                    dict(
                        current,
                        role=AccountRole.ADMIN.value,
                        status=AccountStatus.ACTIVE.value,
                        password_hash=hash_password(password),
                    ),
                    expected_version=current["version"],
                )
            else:
                account = Account(
                    id=str(uuid4()),
                    email=email,
                    password_hash=hash_password(password),
                    role=AccountRole.ADMIN,
                    created_at=_now(),
                )
                stored = ctx.insert(ACCOUNTS, account.model_dump(mode="json"))
            ctx.commit()

        logger.info("Admin account ensured", account_id=stored["id"])
        return Account.model_validate(stored)

    def set_status(self, actor: Account, account_id: str, status: AccountStatus) -> Account:
        """
        Suspend, ban or reactivate an account.

        Raises:
            PermissionDeniedError: actor is not an admin, or targets themselves
            NotFoundError: no such account
        """
        if not actor.is_admin:
            raise PermissionDeniedError("Only administrators can change account status.")
        if actor.id == account_id:
            raise PermissionDeniedError("Administrators cannot change their own status.")

        with self._store.begin_batch() as ctx:
            doc = ctx.get(ACCOUNTS, account_id)
            if doc is None:
                raise NotFoundError(f"Account {account_id} not found")
            stored = ctx.update(
                ACCOUNTS,
                dict(doc, status=status.value),
                expected_version=doc["version"],
            )
            ctx.commit()

        logger.info(
            "Account status changed",
            account_id=account_id,
            status=status.value,
            changed_by=actor.id,
        )
        return Account.model_validate(stored)
