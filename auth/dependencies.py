"""
auth/dependencies.py -- FastAPI Depends() helpers: the authorization gate.

One auth method: Authorization: Bearer <access token>. Per request:
  1. missing or malformed header        -> 401
  2. provider.verify_access_token fails -> 401
  3. no profile for the token's id      -> 401 (fail closed, both backends)
  4. profile role not in allowed set    -> 403

The role always comes from the stored profile, never from the token, so a
role change made with the admin CLI takes effect on the next request.
Nothing is cached between requests.

get_current_identity() stops after step 3. require_role(*roles) builds a
dependency that also runs step 4; require_admin and require_user are the two
role sets the routers use.

Layer rule: no imports from api/ or catalog/.
  auth/dependencies.py may import from fastapi (for Request) because this
  module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from collections.abc import Callable

from fastapi import Request

from auth.models import ROLE_ADMIN, ROLE_USER, Identity
from core.errors import Forbidden, Unauthorized


def _bearer_token(request: Request) -> str:
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise Unauthorized(
            "Access token required. Provide it in the Authorization header.",
            code="missing_token",
        )
    return token.strip()


def get_current_identity(request: Request) -> Identity:
    """Require a valid bearer token that maps to a stored profile.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(identity: Identity = Depends(get_current_identity)): ...

    Sets request.state.identity and request.state.access_token for handlers
    (sign-out needs the raw token to revoke a Supabase session).
    """
    provider = request.app.state.identity_provider
    token = _bearer_token(request)
    claims = provider.verify_access_token(token)

    identity = provider.profiles.find_by_id(claims.id)
    if identity is None:
        raise Unauthorized("Profile not found", code="profile_not_found")

    request.state.identity = identity
    request.state.access_token = token
    return identity


def require_role(*roles: str) -> Callable[[Request], Identity]:
    """Build a dependency that admits only identities whose role is in roles."""
    allowed = frozenset(roles)

    def dependency(request: Request) -> Identity:
        identity = get_current_identity(request)
        if identity.role not in allowed:
            raise Forbidden(
                f"Access denied. Required role: {' or '.join(roles)}",
                code="forbidden",
            )
        return identity

    return dependency


require_admin = require_role(ROLE_ADMIN)
require_user = require_role(ROLE_ADMIN, ROLE_USER)
