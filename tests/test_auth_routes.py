"""
tests/test_auth_routes.py -- Integration tests for /auth/* and the authorization gate.

These run the full stack: FastAPI routing -> request validation -> gate
dependency -> LocalIdentityProvider -> ProfileStore -> response envelope.

Coverage:
  - sign-up 201, duplicate 400, validation 422 with per-field messages
  - passwords keep their whitespace; the 72 limit is in bytes
  - sign-in 200 with tokens and no-store, wrong password / unknown email 401
  - refresh rotation, sign-out revocation
  - reset-password request is identical for known and unknown emails
  - update-password, verify-email callback, resend-verification
  - gate: 401 missing/invalid token, 401 unknown profile, 403 wrong role,
    role read from the store on every request

Fixtures used (from conftest.py):
  - api: Harness with a signed-in admin and user, a RecordingMailer, and the
    stores behind the app. State is shared across this module, so every test
    that creates an account uses its own email address.
"""

from __future__ import annotations

from auth.models import ROLE_ADMIN, Claims


def _sign_up(api, email, password="secret1", name="Ada"):
    return api.client.post("/auth/signup", json={"email": email, "password": password, "fullName": name})


def _sign_in(api, email, password="secret1"):
    return api.client.post("/auth/signin", json={"email": email, "password": password})


class TestSignUp:
    def test_creates_account(self, api):
        resp = _sign_up(api, "new1@example.com")
        assert resp.status_code == 201, resp.text
        body = resp.json()
        assert body["success"] is True
        assert body["data"]["email"] == "new1@example.com"
        assert body["data"]["role"] == "user"
        assert body["data"]["emailVerified"] is False
        assert "hashed_password" not in body["data"]
        assert api.mailer.last("verification")[1] == "new1@example.com"

    def test_duplicate_email_is_400(self, api):
        _sign_up(api, "dup@example.com")
        resp = _sign_up(api, "DUP@example.com")
        assert resp.status_code == 400
        body = resp.json()
        assert body["success"] is False
        assert body["error"]["code"] == "email_taken"
        assert body["message"] == "Email already registered"

    def test_validation_reports_fields(self, api):
        resp = api.client.post("/auth/signup", json={"email": "not-an-email", "password": "123", "fullName": "A"})
        assert resp.status_code == 422
        fields = resp.json()["error"]["fields"]
        assert "email" in fields
        assert "password" in fields

    def test_mail_outage_does_not_fail_signup(self, api):
        api.mailer.explode = True
        try:
            resp = _sign_up(api, "outage@example.com")
        finally:
            api.mailer.explode = False
        assert resp.status_code == 201
        assert api.profiles.find_by_email("outage@example.com") is not None

    def test_password_whitespace_is_kept(self, api):
        assert _sign_up(api, "  Padded@Example.com ", password="  padded1  ").status_code == 201
        assert _sign_in(api, "padded@example.com", "  padded1  ").status_code == 200
        assert _sign_in(api, "padded@example.com", "padded1").status_code == 401

    def test_password_limit_counts_bytes(self, api):
        # 72 characters, 108 bytes once encoded.
        password = "é" * 36 + "a" * 36
        resp = _sign_up(api, "multibyte@example.com", password=password)
        assert resp.status_code == 422
        assert "72 bytes" in resp.json()["error"]["fields"]["password"]
        assert api.profiles.find_by_email("multibyte@example.com") is None
        assert _sign_in(api, api.user.email, password).status_code == 422


class TestSignIn:
    def test_returns_tokens_with_no_store(self, api):
        resp = _sign_in(api, api.user.email, api.password)
        assert resp.status_code == 200, resp.text
        assert resp.headers["cache-control"] == "no-store"
        data = resp.json()["data"]
        assert data["user"]["email"] == api.user.email
        assert data["session"]["tokenType"] == "bearer"
        assert data["session"]["expiresIn"] == 900

        me = api.client.get("/auth/me", headers=api.auth(data["session"]["accessToken"]))
        assert me.json()["data"]["id"] == api.user.id

    def test_failures_are_indistinguishable(self, api):
        wrong = _sign_in(api, api.user.email, "wrong-password")
        unknown = _sign_in(api, "nobody@example.com", api.password)
        assert wrong.status_code == unknown.status_code == 401
        assert wrong.json() == unknown.json()
        assert wrong.json()["message"] == "Invalid email or password"


class TestRefreshAndSignOut:
    def test_refresh_rotates(self, api):
        _sign_up(api, "rotate@example.com")
        first = _sign_in(api, "rotate@example.com").json()["data"]["session"]["refreshToken"]

        resp = api.client.post("/auth/refresh", json={"refreshToken": first})
        assert resp.status_code == 200
        assert resp.headers["cache-control"] == "no-store"
        second = resp.json()["data"]["session"]["refreshToken"]

        stale = api.client.post("/auth/refresh", json={"refreshToken": first})
        assert stale.status_code == 401
        assert stale.json()["error"]["code"] == "invalid_refresh_token"
        assert api.client.post("/auth/refresh", json={"refreshToken": second}).status_code == 200

    def test_garbage_refresh_token(self, api):
        resp = api.client.post("/auth/refresh", json={"refreshToken": "garbage"})
        assert resp.status_code == 401

    def test_sign_out_revokes_refresh(self, api):
        _sign_up(api, "leaver@example.com")
        session = _sign_in(api, "leaver@example.com").json()["data"]["session"]

        resp = api.client.post("/auth/signout", headers=api.auth(session["accessToken"]))
        assert resp.status_code == 200
        assert resp.json()["message"] == "Sign out successful"
        assert api.client.post("/auth/refresh", json={"refreshToken": session["refreshToken"]}).status_code == 401

    def test_sign_out_requires_token(self, api):
        assert api.client.post("/auth/signout").status_code == 401


class TestPasswordReset:
    def test_request_answer_does_not_depend_on_email(self, api):
        known = api.client.post("/auth/reset-password", json={"email": api.user.email})
        unknown = api.client.post("/auth/reset-password", json={"email": "nobody@example.com"})
        assert known.status_code == unknown.status_code == 200
        assert known.json() == unknown.json()

    def test_full_reset(self, api):
        _sign_up(api, "forgetful@example.com")
        api.client.post("/auth/reset-password", json={"email": "forgetful@example.com"})
        token = api.mailer.last("reset")[2]

        resp = api.client.post("/auth/update-password", json={"token": token, "newPassword": "brand-new"})
        assert resp.status_code == 200
        assert _sign_in(api, "forgetful@example.com", "brand-new").status_code == 200

        reused = api.client.post("/auth/update-password", json={"token": token, "newPassword": "again-new"})
        assert reused.status_code == 400
        assert reused.json()["message"] == "Invalid or expired reset token"

    def test_reset_to_password_with_surrounding_spaces(self, api):
        _sign_up(api, "spacey@example.com")
        api.client.post("/auth/reset-password", json={"email": "spacey@example.com"})
        token = api.mailer.last("reset")[2]

        resp = api.client.post("/auth/update-password", json={"token": token, "newPassword": "  hunter22  "})
        assert resp.status_code == 200
        assert _sign_in(api, "spacey@example.com", "  hunter22  ").status_code == 200
        assert _sign_in(api, "spacey@example.com", "hunter22").status_code == 401

    def test_reset_rejects_password_over_72_bytes(self, api):
        _sign_up(api, "wide@example.com")
        api.client.post("/auth/reset-password", json={"email": "wide@example.com"})
        token = api.mailer.last("reset")[2]

        resp = api.client.post("/auth/update-password", json={"token": token, "newPassword": "ü" * 40})
        assert resp.status_code == 422
        assert "newPassword" in resp.json()["error"]["fields"]
        assert _sign_in(api, "wide@example.com").status_code == 200


class TestEmailVerification:
    def test_callback_verifies(self, api):
        _sign_up(api, "verify-me@example.com", name="Vera")
        token = api.mailer.last("verification")[2]

        resp = api.client.post("/auth/verify-email/callback", json={"token": token})
        assert resp.status_code == 200
        assert resp.json()["data"] == {"email": "verify-me@example.com", "emailVerified": True}
        assert api.mailer.last("welcome") == ("welcome", "verify-me@example.com", "Vera")

    def test_callback_with_bad_token(self, api):
        resp = api.client.post("/auth/verify-email/callback", json={"token": "nope"})
        assert resp.status_code == 400

    def test_resend(self, api):
        _sign_up(api, "resend@example.com")
        resp = api.client.post("/auth/resend-verification", json={"email": "resend@example.com"})
        assert resp.status_code == 200
        assert resp.json()["message"] == "Verification email sent"

    def test_resend_unknown_and_verified(self, api):
        assert api.client.post("/auth/resend-verification", json={"email": "ghost@example.com"}).status_code == 404
        already = api.client.post("/auth/resend-verification", json={"email": api.user.email})
        assert already.status_code == 400
        assert already.json()["error"]["code"] == "already_verified"

    def test_resend_mail_failure_is_500(self, api):
        _sign_up(api, "resend-fail@example.com")
        api.mailer.deliver = False
        try:
            resp = api.client.post("/auth/resend-verification", json={"email": "resend-fail@example.com"})
        finally:
            api.mailer.deliver = True
        assert resp.status_code == 500
        assert resp.json()["error"]["code"] == "email_failed"


class TestGate:
    def test_me_without_token(self, api):
        resp = api.client.get("/auth/me")
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "missing_token"

    def test_me_with_wrong_scheme(self, api):
        resp = api.client.get("/auth/me", headers={"Authorization": f"Basic {api.user_token}"})
        assert resp.status_code == 401

    def test_me_with_garbage_token(self, api):
        resp = api.client.get("/auth/me", headers=api.auth("garbage"))
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "invalid_token"

    def test_valid_token_without_profile_fails_closed(self, api):
        provider = api.client.app.state.identity_provider
        token = provider.credentials.issue_access_token(Claims(id="ghost", email="ghost@example.com", role="admin"))
        resp = api.client.get("/auth/me", headers=api.auth(token))
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "profile_not_found"

    def test_user_cannot_reach_admin_routes(self, api):
        resp = api.client.get("/api/v1/admin/categories", headers=api.user_headers)
        assert resp.status_code == 403
        assert resp.json()["message"] == "Access denied. Required role: admin"

    def test_role_comes_from_store_not_token(self, api):
        _sign_up(api, "promoted@example.com")
        token = _sign_in(api, "promoted@example.com").json()["data"]["session"]["accessToken"]
        assert api.client.get("/api/v1/admin/categories", headers=api.auth(token)).status_code == 403

        api.profiles.set_role("promoted@example.com", ROLE_ADMIN)
        assert api.client.get("/api/v1/admin/categories", headers=api.auth(token)).status_code == 200

    def test_me_returns_profile(self, api):
        resp = api.client.get("/auth/me", headers=api.admin_headers)
        assert resp.status_code == 200
        assert resp.json()["data"]["role"] == "admin"
        assert resp.json()["message"] == "Profile retrieved successfully"
