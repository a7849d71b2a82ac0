"""
api/routes/v1/auth.py -- Account and session endpoints.

Routes (mounted at the application root):
  POST /auth/signup                -- create account; 201 + public profile
  POST /auth/signin                -- email + password; 200 + profile + token pair
  POST /auth/refresh               -- rotate the token pair
  POST /auth/signout               -- revoke the stored refresh token (requires auth)
  POST /auth/reset-password        -- request a reset email; always 200
  POST /auth/update-password       -- redeem a reset token
  POST /auth/verify-email/callback -- redeem a verification token
  POST /auth/resend-verification   -- mint and email a new verification token
  GET  /auth/me                    -- current profile (requires auth)

Security:
  POST /signin is rate-limited per client IP (LOGIN_RATE_LIMIT).
  Unknown email and wrong password share one message and one timing profile.
  POST /reset-password answers identically whether or not the email exists.
  Cache-Control: no-store on every response that carries tokens.

Handlers are plain def: bcrypt and the stores block, so FastAPI runs them in
its thread pool. All logic lives in the IdentityProvider on app.state; these
functions only translate HTTP to calls and results to envelopes.
"""

from __future__ import annotations

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter, login_rate_limit
from api.models import (
    Envelope,
    IdentityOut,
    RefreshRequest,
    ResendVerificationRequest,
    ResetPasswordRequest,
    SessionOut,
    SignInRequest,
    SignUpRequest,
    UpdatePasswordRequest,
    VerifiedEmailOut,
    VerifyEmailRequest,
)
from auth.dependencies import get_current_identity
from auth.models import Identity, Session
from auth.providers import IdentityProvider

# Auth policy:
# - POST /auth/signout, GET /auth/me: requires auth (get_current_identity)
# - everything else:                  public
router = APIRouter()

RESET_REQUESTED = "If that email exists, a password reset link has been sent."


def _provider(request: Request) -> IdentityProvider:
    return request.app.state.identity_provider


def _session_response(session: Session, message: str) -> JSONResponse:
    resp = JSONResponse(
        status_code=200,
        content=Envelope[SessionOut](message=message, data=SessionOut.from_session(session)).model_dump(),
    )
    resp.headers["Cache-Control"] = "no-store"
    return resp


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/signup", response_model=Envelope[IdentityOut], status_code=201)
def sign_up(request: Request, body: SignUpRequest, background: BackgroundTasks) -> Envelope[IdentityOut]:
    """Create an account and send a verification email in the background.

    A duplicate email answers 400. Mail failure does not undo the sign-up.
    """
    identity = _provider(request).sign_up(body.email, body.password, body.fullName, tasks=background)
    return Envelope[IdentityOut](
        message="Sign up successful. Please check your email to verify your account.",
        data=IdentityOut.from_identity(identity),
    )


@limiter.limit(login_rate_limit)  # must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/signin", response_model=Envelope[SessionOut])
def sign_in(request: Request, body: SignInRequest) -> JSONResponse:
    """Authenticate and return a fresh token pair.

    The new refresh token replaces the stored one, so any refresh token handed
    out earlier for this account stops working.
    """
    session = _provider(request).sign_in(body.email, body.password)
    return _session_response(session, "Sign in successful")


@router.post("/auth/refresh", response_model=Envelope[SessionOut])
def refresh(request: Request, body: RefreshRequest) -> JSONResponse:
    """Exchange the current refresh token for a new pair. The old one dies."""
    session = _provider(request).refresh(body.refreshToken)
    return _session_response(session, "Token refreshed successfully")


@router.post("/auth/reset-password", response_model=Envelope[None])
def reset_password(request: Request, body: ResetPasswordRequest, background: BackgroundTasks) -> Envelope[None]:
    _provider(request).request_password_reset(body.email, tasks=background)
    return Envelope[None](message=RESET_REQUESTED)


@router.post("/auth/update-password", response_model=Envelope[None])
def update_password(request: Request, body: UpdatePasswordRequest) -> Envelope[None]:
    _provider(request).reset_password(body.token, body.newPassword)
    return Envelope[None](message="Password updated successfully")


@router.post("/auth/verify-email/callback", response_model=Envelope[VerifiedEmailOut])
def verify_email(request: Request, body: VerifyEmailRequest, background: BackgroundTasks) -> Envelope[VerifiedEmailOut]:
    identity = _provider(request).verify_email(body.token, tasks=background)
    return Envelope[VerifiedEmailOut](
        message="Email verified successfully",
        data=VerifiedEmailOut(email=identity.email, emailVerified=identity.email_verified),
    )


@router.post("/auth/resend-verification", response_model=Envelope[None])
def resend_verification(request: Request, body: ResendVerificationRequest) -> Envelope[None]:
    """Send a new verification email. Unlike sign-up, a mail failure is an error here."""
    _provider(request).resend_verification(body.email)
    return Envelope[None](message="Verification email sent")


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/signout", response_model=Envelope[None])
def sign_out(request: Request, identity: Identity = Depends(get_current_identity)) -> Envelope[None]:
    """Revoke the stored refresh token. Signing out twice is not an error.

    The access token itself stays valid until it expires.
    """
    _provider(request).sign_out(identity, request.state.access_token)
    return Envelope[None](message="Sign out successful")


@router.get("/auth/me", response_model=Envelope[IdentityOut])
def me(identity: Identity = Depends(get_current_identity)) -> Envelope[IdentityOut]:
    """Return the profile of the authenticated caller."""
    return Envelope[IdentityOut](message="Profile retrieved successfully", data=IdentityOut.from_identity(identity))
