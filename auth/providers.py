"""
auth/providers.py -- The authentication flow behind one interface.

IdentityProvider is the capability the HTTP layer and the authorization gate
depend on. Two implementations exist:
  LocalIdentityProvider    -- bcrypt + our own JWTs + the profiles table (here)
  SupabaseIdentityProvider -- Supabase Auth REST API (auth/supabase.py)

api/main.py picks one at startup from settings.identity_backend. Nothing
downstream branches on which one is active.

Email sends are scheduled on a TaskScheduler after the state change they follow
has been written, so a mail failure can never undo a sign-up, a verification,
or a reset request. resend_verification() is the exception: it sends inline
and surfaces failure, because sending is all it does.

Layer rule: no imports from api/ or catalog/.
"""

from __future__ import annotations

import hmac
import logging
from typing import Optional, Protocol

from auth.mailer import InlineTasks, Mailer, TaskScheduler, deliver_best_effort
from auth.models import ROLE_USER, Claims, Identity, Session
from auth.store import ProfileStore
from auth.tokens import MAX_PASSWORD_BYTES, CredentialService
from core.clock import Clock, utc_now
from core.errors import BadRequest, Conflict, InternalError, NotFound, Unauthorized, ValidationFailed
from core.identifiers import expiry_timestamp, random_token

logger = logging.getLogger("shopfront.auth")

MIN_PASSWORD_LENGTH = 6

INVALID_CREDENTIALS = "Invalid email or password"
INVALID_RESET_TOKEN = "Invalid or expired reset token"
INVALID_VERIFICATION_TOKEN = "Invalid or expired verification token"


class IdentityProvider(Protocol):
    profiles: ProfileStore

    def sign_up(
        self, email: str, password: str, full_name: Optional[str], tasks: Optional[TaskScheduler] = None
    ) -> Identity: ...

    def sign_in(self, email: str, password: str) -> Session: ...

    def sign_out(self, identity: Identity, access_token: Optional[str] = None) -> None: ...

    def refresh(self, refresh_token: str) -> Session: ...

    def request_password_reset(self, email: str, tasks: Optional[TaskScheduler] = None) -> None: ...

    def reset_password(self, token: str, new_password: str) -> None: ...

    def verify_email(self, token: str, tasks: Optional[TaskScheduler] = None) -> Identity: ...

    def resend_verification(self, email: str) -> None: ...

    def verify_access_token(self, token: str) -> Claims: ...


def password_problem(password: str) -> Optional[str]:
    """Return why password cannot be stored, or None when it can.

    The upper bound is in UTF-8 bytes, not characters: bcrypt ignores
    everything past byte 72.
    """
    if len(password) < MIN_PASSWORD_LENGTH:
        return f"Password must be at least {MIN_PASSWORD_LENGTH} characters"
    if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
        return f"Password must be at most {MAX_PASSWORD_BYTES} bytes"
    return None


def check_password_length(password: str, field: str = "password") -> None:
    """Raise ValidationFailed before anything is written."""
    message = password_problem(password)
    if message is not None:
        raise ValidationFailed(message, fields={field: message})


def email_taken() -> Conflict:
    # Duplicate sign-up answers 400, not the usual 409.
    return Conflict("Email already registered", code="email_taken", status_code=400)


class LocalIdentityProvider:
    """Self-hosted authentication on top of ProfileStore and CredentialService.

    Usage:
        provider = LocalIdentityProvider(profiles, credentials, EmailService(settings))
        identity = provider.sign_up("a@example.com", "secret1", "Ada")
        session = provider.sign_in("a@example.com", "secret1")
    """

    def __init__(
        self,
        profiles: ProfileStore,
        credentials: CredentialService,
        mailer: Mailer,
        verification_hours: float = 24,
        reset_hours: float = 1,
        clock: Clock = utc_now,
    ) -> None:
        self.profiles = profiles
        self.credentials = credentials
        self.mailer = mailer
        self.verification_hours = verification_hours
        self.reset_hours = reset_hours
        self._clock = clock

    # ------------------------------------------------------------------
    # Sign-up / sign-in / sign-out / refresh
    # ------------------------------------------------------------------

    def sign_up(
        self, email: str, password: str, full_name: Optional[str], tasks: Optional[TaskScheduler] = None
    ) -> Identity:
        check_password_length(password)
        email = email.strip().lower()
        if self.profiles.find_by_email(email) is not None:
            raise email_taken()

        token = random_token()
        try:
            identity = self.profiles.create(
                Identity(
                    email=email,
                    full_name=full_name,
                    role=ROLE_USER,
                    hashed_password=self.credentials.hash_password(password),
                    email_verified=False,
                    verify_token=token,
                    verify_expires=expiry_timestamp(self.verification_hours, self._clock),
                )
            )
        except Conflict as exc:
            # Lost a race with a concurrent sign-up for the same email.
            raise email_taken() from exc

        logger.info("Sign-up: profile %s created", identity.id)
        (tasks or InlineTasks()).add_task(deliver_best_effort, self.mailer.send_verification_email, email, token)
        return identity

    def sign_in(self, email: str, password: str) -> Session:
        """Authenticate and rotate the stored refresh token.

        Unknown email and wrong password produce the same error and take the
        same time: a bcrypt comparison runs either way.
        """
        identity = self.profiles.find_by_email(email)
        if identity is None or identity.hashed_password is None:
            self.credentials.burn_password_check(password)
            raise Unauthorized(INVALID_CREDENTIALS, code="invalid_credentials")

        try:
            matched = self.credentials.verify_password(password, identity.hashed_password)
        except ValueError as exc:
            logger.error("Stored password hash for profile %s is malformed", identity.id)
            raise InternalError() from exc
        if not matched:
            raise Unauthorized(INVALID_CREDENTIALS, code="invalid_credentials")

        return self._start_session(identity)

    def sign_out(self, identity: Identity, access_token: Optional[str] = None) -> None:
        """Clear the stored refresh token. Clearing an empty value is fine."""
        self.profiles.update(identity.id, refresh_token=None)

    def refresh(self, refresh_token: str) -> Session:
        claims = self.credentials.verify_refresh_token(refresh_token)
        identity = self.profiles.find_by_id(claims.id)
        stored = identity.refresh_token if identity is not None else None
        if stored is None or not hmac.compare_digest(stored.encode("utf-8"), refresh_token.encode("utf-8")):
            raise Unauthorized("Invalid refresh token", code="invalid_refresh_token")
        return self._start_session(identity)

    def _start_session(self, identity: Identity) -> Session:
        # Overwriting the stored token is what revokes every older refresh token.
        tokens = self.credentials.issue_pair(identity)
        self.profiles.update(identity.id, refresh_token=tokens.refresh_token)
        identity.refresh_token = tokens.refresh_token
        return Session(identity=identity, tokens=tokens)

    def verify_access_token(self, token: str) -> Claims:
        return self.credentials.verify_access_token(token)

    # ------------------------------------------------------------------
    # Password reset
    # ------------------------------------------------------------------

    def request_password_reset(self, email: str, tasks: Optional[TaskScheduler] = None) -> None:
        """Issue a reset token if the email is registered. Silent either way."""
        identity = self.profiles.find_by_email(email)
        if identity is None:
            return
        token = random_token()
        self.profiles.update(
            identity.id,
            reset_token=token,
            reset_expires=expiry_timestamp(self.reset_hours, self._clock),
        )
        (tasks or InlineTasks()).add_task(
            deliver_best_effort, self.mailer.send_password_reset_email, identity.email, token
        )

    def reset_password(self, token: str, new_password: str) -> None:
        check_password_length(new_password, field="newPassword")
        identity = self.profiles.find_by_reset_token(token, self._clock())
        if identity is None:
            raise BadRequest(INVALID_RESET_TOKEN, code="invalid_token")
        # Password and token clearing land in one statement: the token is single use.
        self.profiles.update(
            identity.id,
            hashed_password=self.credentials.hash_password(new_password),
            reset_token=None,
            reset_expires=None,
        )
        logger.info("Password reset for profile %s", identity.id)

    # ------------------------------------------------------------------
    # Email verification
    # ------------------------------------------------------------------

    def verify_email(self, token: str, tasks: Optional[TaskScheduler] = None) -> Identity:
        identity = self.profiles.find_by_verification_token(token, self._clock())
        if identity is None:
            raise BadRequest(INVALID_VERIFICATION_TOKEN, code="invalid_token")
        self.profiles.update(identity.id, email_verified=True, verify_token=None, verify_expires=None)
        identity.email_verified = True
        identity.verify_token = None
        identity.verify_expires = None
        (tasks or InlineTasks()).add_task(
            deliver_best_effort, self.mailer.send_welcome_email, identity.email, identity.full_name
        )
        return identity

    def resend_verification(self, email: str) -> None:
        identity = self.profiles.find_by_email(email)
        if identity is None:
            raise NotFound("User not found", code="user_not_found")
        if identity.email_verified:
            raise BadRequest("Email already verified", code="already_verified")

        token = random_token()
        self.profiles.update(
            identity.id,
            verify_token=token,
            verify_expires=expiry_timestamp(self.verification_hours, self._clock),
        )
        send_verification(self.mailer, identity.email, token)


def send_verification(mailer: Mailer, email: str, token: str) -> None:
    """Send a verification email inline; any failure is an InternalError."""
    try:
        delivered = mailer.send_verification_email(email, token)
    except Exception as exc:
        logger.exception("Verification email to %s raised", email)
        raise InternalError("Failed to send verification email", code="email_failed") from exc
    if not delivered:
        raise InternalError("Failed to send verification email", code="email_failed")
