"""
auth/supabase.py -- IdentityProvider backed by Supabase Auth (GoTrue REST API).

Supabase owns passwords, sessions and the verification/reset emails it sends
itself. We still own the profiles table, because roles live there: the
authorization gate reads the role from ProfileStore for both backends.

Endpoints used (all under {SUPABASE_URL}/auth/v1):
  POST /signup                          -- create user
  POST /token?grant_type=password       -- sign in
  POST /token?grant_type=refresh_token  -- rotate session
  POST /logout                          -- revoke the session of the bearer
  POST /recover                         -- send password reset email
  POST /verify                          -- redeem a signup/recovery token hash
  PUT  /user                            -- change password (recovery session)
  POST /resend                          -- resend signup confirmation
  GET  /user                            -- resolve an access token

Every call sends the anon key as `apikey`. Any transport failure surfaces as
InternalError; Supabase's own 4xx answers map onto the same error kinds the
local provider raises.

Layer rule: no imports from api/ or catalog/.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import requests

from auth.mailer import InlineTasks, Mailer, TaskScheduler, deliver_best_effort
from auth.models import ROLE_USER, Claims, Identity, Session, TokenPair
from auth.providers import (
    INVALID_CREDENTIALS,
    INVALID_RESET_TOKEN,
    INVALID_VERIFICATION_TOKEN,
    check_password_length,
    email_taken,
)
from auth.store import ProfileStore
from core.errors import BadRequest, Conflict, InternalError, NotFound, Unauthorized

logger = logging.getLogger("shopfront.auth.supabase")

_TIMEOUT = 10


class SupabaseIdentityProvider:
    """Authentication delegated to Supabase; roles kept in ProfileStore.

    session is injectable so tests can hand in a Mock instead of the network.
    """

    def __init__(
        self,
        base_url: str,
        anon_key: str,
        profiles: ProfileStore,
        mailer: Mailer,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/") + "/auth/v1"
        self.anon_key = anon_key
        self.profiles = profiles
        self.mailer = mailer
        if session is None:
            session = requests.Session()
            session.max_redirects = 3
        self._session = session

    # ------------------------------------------------------------------
    # HTTP plumbing
    # ------------------------------------------------------------------

    def _call(
        self,
        method: str,
        path: str,
        body: Optional[dict[str, Any]] = None,
        bearer: Optional[str] = None,
        params: Optional[dict[str, str]] = None,
    ) -> requests.Response:
        headers = {"apikey": self.anon_key, "Authorization": f"Bearer {bearer or self.anon_key}"}
        try:
            return self._session.request(
                method,
                f"{self.base_url}{path}",
                json=body,
                params=params,
                headers=headers,
                timeout=_TIMEOUT,
            )
        except requests.RequestException as exc:
            logger.error("Supabase %s %s failed: %s", method, path, exc)
            raise InternalError("Identity service unavailable", code="identity_service_error") from exc

    @staticmethod
    def _json(resp: requests.Response) -> dict[str, Any]:
        try:
            data = resp.json()
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {}

    @classmethod
    def _error_text(cls, resp: requests.Response) -> str:
        data = cls._json(resp)
        return str(data.get("msg") or data.get("error_description") or data.get("message") or "")

    def _unexpected(self, resp: requests.Response, action: str) -> InternalError:
        logger.error("Supabase %s returned HTTP %s: %s", action, resp.status_code, self._error_text(resp))
        return InternalError()

    def _session_from(self, data: dict[str, Any]) -> Session:
        user = data.get("user") or {}
        identity = self.profiles.find_by_id(str(user.get("id", "")))
        if identity is None:
            # Supabase knows the user but we never recorded a profile. The gate
            # will refuse the token until one exists.
            identity = Identity(id=user.get("id"), email=user.get("email", ""), role=ROLE_USER)
        tokens = TokenPair(
            access_token=data["access_token"],
            refresh_token=data["refresh_token"],
            expires_in=int(data.get("expires_in", 3600)),
        )
        return Session(identity=identity, tokens=tokens)

    # ------------------------------------------------------------------
    # IdentityProvider
    # ------------------------------------------------------------------

    def sign_up(
        self, email: str, password: str, full_name: Optional[str], tasks: Optional[TaskScheduler] = None
    ) -> Identity:
        check_password_length(password)
        email = email.strip().lower()
        if self.profiles.find_by_email(email) is not None:
            raise email_taken()

        resp = self._call("POST", "/signup", {"email": email, "password": password, "data": {"full_name": full_name}})
        if resp.status_code in (400, 422) and "registered" in self._error_text(resp).lower():
            raise email_taken()
        if not resp.ok:
            raise self._unexpected(resp, "signup")

        data = self._json(resp)
        user = data.get("user") or data
        try:
            return self.profiles.create(
                Identity(
                    id=str(user["id"]),
                    email=email,
                    full_name=full_name,
                    role=ROLE_USER,
                    email_verified=bool(user.get("email_confirmed_at")),
                )
            )
        except KeyError as exc:
            raise self._unexpected(resp, "signup") from exc
        except Conflict as exc:
            raise email_taken() from exc

    def sign_in(self, email: str, password: str) -> Session:
        resp = self._call(
            "POST",
            "/token",
            {"email": email.strip().lower(), "password": password},
            params={"grant_type": "password"},
        )
        if resp.status_code in (400, 401):
            raise Unauthorized(INVALID_CREDENTIALS, code="invalid_credentials")
        if not resp.ok:
            raise self._unexpected(resp, "sign-in")
        return self._session_from(self._json(resp))

    def sign_out(self, identity: Identity, access_token: Optional[str] = None) -> None:
        if not access_token:
            return
        resp = self._call("POST", "/logout", bearer=access_token)
        # An already revoked session answers 401/404; sign-out stays idempotent.
        if not resp.ok and resp.status_code not in (401, 403, 404):
            raise self._unexpected(resp, "logout")

    def refresh(self, refresh_token: str) -> Session:
        resp = self._call("POST", "/token", {"refresh_token": refresh_token}, params={"grant_type": "refresh_token"})
        if resp.status_code in (400, 401, 403):
            raise Unauthorized("Invalid refresh token", code="invalid_refresh_token")
        if not resp.ok:
            raise self._unexpected(resp, "refresh")
        return self._session_from(self._json(resp))

    def request_password_reset(self, email: str, tasks: Optional[TaskScheduler] = None) -> None:
        # Supabase answers the same for unknown emails; failures are only logged
        # so the caller's response never varies.
        try:
            resp = self._call("POST", "/recover", {"email": email.strip().lower()})
        except InternalError:
            return
        if not resp.ok:
            logger.warning("Supabase recover returned HTTP %s", resp.status_code)

    def reset_password(self, token: str, new_password: str) -> None:
        check_password_length(new_password, field="newPassword")
        resp = self._call("POST", "/verify", {"type": "recovery", "token_hash": token})
        if not resp.ok:
            raise BadRequest(INVALID_RESET_TOKEN, code="invalid_token")
        recovery_token = self._json(resp).get("access_token")
        if not recovery_token:
            raise BadRequest(INVALID_RESET_TOKEN, code="invalid_token")

        resp = self._call("PUT", "/user", {"password": new_password}, bearer=recovery_token)
        if not resp.ok:
            raise self._unexpected(resp, "password update")

    def verify_email(self, token: str, tasks: Optional[TaskScheduler] = None) -> Identity:
        resp = self._call("POST", "/verify", {"type": "signup", "token_hash": token})
        if not resp.ok:
            raise BadRequest(INVALID_VERIFICATION_TOKEN, code="invalid_token")
        user = self._json(resp).get("user") or {}
        identity = self.profiles.find_by_id(str(user.get("id", "")))
        if identity is None:
            raise NotFound("User not found", code="user_not_found")

        self.profiles.update(identity.id, email_verified=True)
        identity.email_verified = True
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

        resp = self._call("POST", "/resend", {"type": "signup", "email": identity.email})
        if not resp.ok:
            logger.error("Supabase resend returned HTTP %s", resp.status_code)
            raise InternalError("Failed to send verification email", code="email_failed")

    def verify_access_token(self, token: str) -> Claims:
        resp = self._call("GET", "/user", bearer=token)
        if not resp.ok:
            raise Unauthorized("Invalid or expired token", code="invalid_token")
        user = self._json(resp)
        user_id, email = user.get("id"), user.get("email")
        if not isinstance(user_id, str) or not isinstance(email, str):
            raise Unauthorized("Invalid or expired token", code="invalid_token")
        profile = self.profiles.find_by_id(user_id)
        return Claims(id=user_id, email=email, role=profile.role if profile else ROLE_USER)
