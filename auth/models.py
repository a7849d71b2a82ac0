"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores and providers do
the work; these only own the shape.

Layer rule: no imports from api/ or catalog/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

ROLE_USER = "user"
ROLE_ADMIN = "admin"
ROLES = (ROLE_USER, ROLE_ADMIN)


@dataclass
class Identity:
    """A profile row: who someone is and the credential state attached to them.

    hashed_password is None for identities managed by an external auth
    provider (they never authenticate against our bcrypt hash).

    verify_token / reset_token are opaque lookup keys with their own expiry.
    Both are cleared once consumed. refresh_token holds the single currently
    valid refresh token; overwriting or clearing it revokes every older one.
    """

    email: str
    full_name: str | None = None
    role: str = ROLE_USER
    id: str | None = None
    hashed_password: str | None = None
    email_verified: bool = False
    verify_token: str | None = None
    verify_expires: datetime | None = None
    reset_token: str | None = None
    reset_expires: datetime | None = None
    refresh_token: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def public(self) -> dict:
        """Fields safe to hand back to a client. Never includes hashes or tokens."""
        return {
            "id": self.id,
            "email": self.email,
            "fullName": self.full_name,
            "role": self.role,
            "emailVerified": self.email_verified,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }


@dataclass(frozen=True)
class Claims:
    """The identity carried inside a signed access or refresh token."""

    id: str
    email: str
    role: str


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    expires_in: int  # access token lifetime, seconds


@dataclass(frozen=True)
class Session:
    """Result of sign-in or refresh: the token pair plus who it belongs to."""

    identity: Identity
    tokens: TokenPair
