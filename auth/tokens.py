"""
auth/tokens.py -- Password hashing and JWT issue/verify.

Security design decisions:
  JWT: python-jose with HS256. Access and refresh tokens are signed with two
       different secrets, so neither kind ever verifies as the other. Both
       carry id, email and role. Verification raises Unauthorized on any
       failure; expired and forged tokens are deliberately indistinguishable.

       Every token also carries a random jti. Without it, two sign-ins for the
       same identity inside one second would mint byte-identical refresh
       tokens and the stored-token comparison could not tell them apart.

       Expiry is checked against the injected clock rather than by jose, so
       tests can move time forward.

  Passwords: bcrypt, used directly (no passlib wrapper). bcrypt only looks at
       the first 72 bytes. Longer passwords are refused before they reach this
       module; the cut to 72 bytes here only stops newer bcrypt releases
       from raising.
       The _dummy_hash enables timing equalization in sign-in so response
       time does not reveal whether an email is registered.

This module is pure: no store, no network. Checking a refresh token against
the value stored for its identity is the identity provider's job.

Layer rule: no imports from api/ or catalog/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
import math
import uuid
from datetime import datetime, timedelta, timezone

import bcrypt
from jose import JWTError, jwt

from auth.models import Claims, Identity, TokenPair
from core.clock import Clock, utc_now
from core.config import Settings
from core.errors import Unauthorized

logger = logging.getLogger("shopfront.auth")

_ALGORITHM = "HS256"
# bcrypt reads at most this many bytes of a password.
MAX_PASSWORD_BYTES = 72


def _password_bytes(plain: str) -> bytes:
    # Callers reject longer passwords; the cut only keeps bcrypt from raising.
    return plain.encode("utf-8")[:MAX_PASSWORD_BYTES]


class CredentialService:
    """Hashes passwords and signs/verifies access and refresh tokens.

    Usage:
        creds = CredentialService.from_settings(get_settings())
        pair = creds.issue_pair(identity)
        claims = creds.verify_access_token(pair.access_token)
    """

    def __init__(
        self,
        access_secret: str,
        refresh_secret: str,
        access_ttl: int = 15 * 60,
        refresh_ttl: int = 7 * 24 * 3600,
        bcrypt_rounds: int = 12,
        clock: Clock = utc_now,
    ) -> None:
        self._access_secret = access_secret
        self._refresh_secret = refresh_secret
        self.access_ttl = access_ttl
        self.refresh_ttl = refresh_ttl
        self._rounds = bcrypt_rounds
        self._clock = clock
        # Computed once so the first sign-in is not measurably slower.
        self._dummy_hash = self.hash_password("shopfront_timing_dummy")

    @classmethod
    def from_settings(cls, settings: Settings, clock: Clock = utc_now) -> "CredentialService":
        return cls(
            access_secret=settings.jwt_access_secret,
            refresh_secret=settings.jwt_refresh_secret,
            access_ttl=settings.access_token_expire_seconds,
            refresh_ttl=settings.refresh_token_expire_seconds,
            bcrypt_rounds=settings.bcrypt_rounds,
            clock=clock,
        )

    # ------------------------------------------------------------------
    # Passwords
    # ------------------------------------------------------------------

    def hash_password(self, plain: str) -> str:
        """Return a salted bcrypt hash. Length rules are enforced by callers."""
        return bcrypt.hashpw(_password_bytes(plain), bcrypt.gensalt(rounds=self._rounds)).decode("utf-8")

    def verify_password(self, plain: str, hashed: str) -> bool:
        """Return True if plain matches hashed.

        A mismatch is False; a malformed hash raises ValueError from bcrypt.
        """
        return bcrypt.checkpw(_password_bytes(plain), hashed.encode("utf-8"))

    def burn_password_check(self, plain: str) -> None:
        """Run one bcrypt comparison against the dummy hash.

        Called when the email is unknown so the response takes as long as a
        wrong-password response.
        """
        self.verify_password(plain, self._dummy_hash)

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    def _encode(self, claims: Claims, secret: str, ttl: int) -> str:
        now = self._clock()
        payload = {
            "id": claims.id,
            "email": claims.email,
            "role": claims.role,
            "iat": int(now.timestamp()),
            # Rounded up so a token never lives shorter than ttl.
            "exp": math.ceil((now + timedelta(seconds=ttl)).timestamp()),
            "jti": uuid.uuid4().hex,
        }
        return jwt.encode(payload, secret, algorithm=_ALGORITHM)

    def _decode(self, token: str, secret: str) -> Claims:
        try:
            payload = jwt.decode(
                token,
                secret,
                algorithms=[_ALGORITHM],
                options={"verify_exp": False, "verify_iat": False},
            )
        except JWTError as exc:
            raise Unauthorized("Invalid or expired token", code="invalid_token") from exc

        exp = payload.get("exp")
        if not isinstance(exp, (int, float)):
            raise Unauthorized("Invalid or expired token", code="invalid_token")
        if datetime.fromtimestamp(exp, tz=timezone.utc) < self._clock():
            raise Unauthorized("Invalid or expired token", code="invalid_token")
        if not all(isinstance(payload.get(k), str) for k in ("id", "email", "role")):
            raise Unauthorized("Invalid or expired token", code="invalid_token")
        return Claims(id=payload["id"], email=payload["email"], role=payload["role"])

    def issue_access_token(self, claims: Claims) -> str:
        return self._encode(claims, self._access_secret, self.access_ttl)

    def issue_refresh_token(self, claims: Claims) -> str:
        return self._encode(claims, self._refresh_secret, self.refresh_ttl)

    def verify_access_token(self, token: str) -> Claims:
        return self._decode(token, self._access_secret)

    def verify_refresh_token(self, token: str) -> Claims:
        return self._decode(token, self._refresh_secret)

    def issue_pair(self, identity: Identity) -> TokenPair:
        claims = Claims(id=identity.id, email=identity.email, role=identity.role)
        return TokenPair(
            access_token=self.issue_access_token(claims),
            refresh_token=self.issue_refresh_token(claims),
            expires_in=self.access_ttl,
        )
