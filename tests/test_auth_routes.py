"""
tests/test_auth_routes.py -- Integration tests for login, sessions, lockout, registration and MFA.

These tests exercise the full stack: FastAPI routing -> rate limiter ->
UserStore / LicenseStore -> session store -> response serialization.

Coverage:
  - Login: master admin success (cookie + token), bad password, unknown user
  - Lockout: the failure that reaches maxLoginAttempts locks the account
  - Gating: disabled accounts and unlicensed non-master users are refused
  - Sessions: cookie authenticates /auth/user; logout destroys the session
  - Registration: policy errors, duplicates, success
  - MFA: setup, verify-setup, two-step login (marker from /login), disable

Fixtures used (from conftest.py):
  - api_client: (client, token, uid) -- master admin "admin" / ADMIN_PASSWORD
"""

from __future__ import annotations

import pyotp
from fastapi.testclient import TestClient

from audit.store import AuditLogFilter
from conftest import ADMIN_PASSWORD, auth_headers, create_user


def _login(client: TestClient, username: str, password: str = ADMIN_PASSWORD):
    return client.post("/api/auth/login", json={"username": username, "password": password})


class TestLogin:
    def test_master_admin_login(self, api_client: tuple[TestClient, str, int]) -> None:
        """A valid login returns the user, a bearer token and a session cookie."""
        client, _token, uid = api_client
        client.cookies.clear()
        resp = _login(client, "admin")
        assert resp.status_code == 200, f"Expected 200, got {resp.status_code}: {resp.text}"
        data = resp.json()
        assert data["message"] == "Login successful"
        assert data["user"]["id"] == uid
        assert data["user"]["isSystem"] is True
        assert "hashedPassword" not in data["user"], "Password hash must never be serialized"
        assert data["token"]
        assert "pcvisor.sid" in resp.cookies, "Session cookie must be set"
        assert resp.headers.get("Cache-Control") == "no-store"
        client.cookies.clear()

    def test_wrong_password(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        create_user(client.stores.user_store, "wrongpw", is_system=True)
        resp = _login(client, "wrongpw", "not-the-password")
        assert resp.status_code == 401
        assert resp.json()["error"]["message"] == "Invalid username or password"

    def test_unknown_user_same_message(self, api_client: tuple[TestClient, str, int]) -> None:
        """Unknown usernames are indistinguishable from wrong passwords."""
        client, _token, _uid = api_client
        resp = _login(client, "nobody-here", "whatever")
        assert resp.status_code == 401
        assert resp.json() == {
            "error": {"code": "bad_credentials", "message": "Invalid username or password", "detail": None}
        }

    def test_lockout_after_max_attempts(self, api_client: tuple[TestClient, str, int]) -> None:
        """The fifth failure (default maxLoginAttempts) locks the account."""
        client, _token, _uid = api_client
        create_user(client.stores.user_store, "lockme", is_system=True)
        for attempt in range(4):
            resp = _login(client, "lockme", "bad-password")
            assert resp.json()["error"]["code"] == "bad_credentials", f"attempt {attempt + 1}: {resp.text}"
        resp = _login(client, "lockme", "bad-password")
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "account_locked"
        assert "30 minutes" in resp.json()["error"]["message"]

        # Even the right password is refused while locked.
        resp = _login(client, "lockme")
        assert resp.status_code == 401
        assert resp.json()["error"]["message"].startswith("Account is temporarily locked")

    def test_disabled_account(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        create_user(client.stores.user_store, "disabled", is_active=False)
        resp = _login(client, "disabled")
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "account_disabled"

    def test_unlicensed_user_refused(self, api_client: tuple[TestClient, str, int]) -> None:
        """Without a stored license only master admins can log in."""
        client, _token, _uid = api_client
        create_user(client.stores.user_store, "regular")
        resp = _login(client, "regular")
        assert resp.status_code == 403, f"Expected 403, got {resp.status_code}: {resp.text}"
        assert resp.json()["error"]["code"] == "license_required"

    def test_failed_login_is_audited(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        create_user(client.stores.user_store, "audited", is_system=True)
        _login(client, "audited", "bad-password")
        logs, _total = client.stores.audit_store.list_logs(AuditLogFilter(action="Login Failed"))
        assert any(log.username == "audited" and log.status == "failure" for log in logs)


class TestSession:
    def test_cookie_session_and_logout(self, api_client: tuple[TestClient, str, int]) -> None:
        """The session cookie authenticates requests until logout destroys it."""
        client, _token, _uid = api_client
        client.cookies.clear()
        assert _login(client, "admin").status_code == 200

        resp = client.get("/api/auth/user")
        assert resp.status_code == 200, f"Cookie session should authenticate: {resp.text}"
        assert resp.json()["user"]["username"] == "admin"

        sid = client.cookies.get("pcvisor.sid")
        resp = client.post("/api/auth/logout")
        assert resp.status_code == 200
        assert resp.json()["message"] == "Logout successful"

        # Replaying the old session id must fail once the server record is gone.
        client.cookies.clear()
        client.cookies.set("pcvisor.sid", sid)
        assert client.get("/api/auth/user").status_code == 401
        client.cookies.clear()

    def test_unauthenticated(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        client.cookies.clear()
        resp = client.get("/api/auth/user")
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "unauthorized"

    def test_bearer_token(self, api_client: tuple[TestClient, str, int]) -> None:
        client, token, _uid = api_client
        resp = client.get("/api/auth/user", headers=auth_headers(token))
        assert resp.status_code == 200

    def test_permissions(self, api_client: tuple[TestClient, str, int]) -> None:
        client, token, _uid = api_client
        resp = client.get("/api/auth/permissions", headers=auth_headers(token))
        assert resp.status_code == 200
        data = resp.json()
        assert data == {"permissions": ["*"], "isAdmin": True, "roleName": "Admin"}


class TestRegister:
    def test_weak_password_rejected(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        resp = client.post("/api/auth/register", json={"username": "weakling", "password": "password"})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "password_policy"
        assert "uppercase" in resp.json()["error"]["message"]

    def test_register_success_and_duplicate(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        client.cookies.clear()
        body = {"username": "newcomer", "password": "N3wcomer!pass", "fullName": "New Comer"}
        resp = client.post("/api/auth/register", json=body)
        assert resp.status_code == 200, f"Expected 200, got {resp.status_code}: {resp.text}"
        data = resp.json()
        assert data["message"] == "Registration successful"
        assert data["user"]["fullName"] == "New Comer"
        assert data["user"]["roleId"] is None, "Self-registered users never get a role"
        client.cookies.clear()

        resp = client.post("/api/auth/register", json=body)
        assert resp.status_code == 400
        assert resp.json()["error"]["message"] == "Username already exists"


class TestMfa:
    def test_full_mfa_flow(self, api_client: tuple[TestClient, str, int]) -> None:
        """Setup -> verify-setup -> two-step login -> disable."""
        client, _token, _uid = api_client
        client.cookies.clear()
        store = client.stores.user_store
        mfa_uid = create_user(store, "mfauser", is_system=True)
        token = _login(client, "mfauser").json()["token"]
        client.cookies.clear()
        headers = auth_headers(token)

        resp = client.post("/api/auth/mfa/setup", json={"password": "wrong"}, headers=headers)
        assert resp.status_code == 400

        resp = client.post("/api/auth/mfa/setup", json={"password": ADMIN_PASSWORD}, headers=headers)
        assert resp.status_code == 200, resp.text
        setup = resp.json()
        assert setup["qrCode"].startswith("data:image/png;base64,")
        assert setup["otpauthUrl"].startswith("otpauth://totp/")
        totp = pyotp.TOTP(setup["secret"])

        status = client.get("/api/auth/mfa/status", headers=headers).json()
        assert status == {"enabled": False, "verified": False}

        resp = client.post("/api/auth/mfa/verify-setup", json={"code": totp.now()}, headers=headers)
        assert resp.status_code == 200, resp.text
        assert resp.json()["message"] == "MFA enabled successfully"

        resp = _login(client, "mfauser")
        assert resp.status_code == 200
        pending = resp.json()
        assert pending["requiresMfa"] is True
        assert pending["userId"] == mfa_uid
        mfa_token = pending["mfaToken"]
        assert "pcvisor.sid" not in resp.cookies, "No session before the second factor"

        wrong = f"{(int(totp.now()) + 500000) % 1000000:06d}"
        resp = client.post("/api/auth/mfa/verify", json={"userId": mfa_uid, "code": wrong, "mfaToken": mfa_token})
        assert resp.status_code == 401

        resp = client.post("/api/auth/mfa/verify", json={"userId": mfa_uid, "code": totp.now(), "mfaToken": mfa_token})
        assert resp.status_code == 200, resp.text
        assert resp.json()["token"]
        resp = client.post("/api/auth/mfa/verify", json={"userId": mfa_uid, "code": totp.now(), "mfaToken": mfa_token})
        assert resp.status_code == 401, "The marker is consumed by a successful verify"
        client.cookies.clear()

        resp = client.post("/api/auth/mfa/disable", json={"password": ADMIN_PASSWORD}, headers=headers)
        assert resp.status_code == 200
        user = store.get_by_id(mfa_uid)
        assert user.mfa_enabled is False
        assert user.mfa_secret is None

    def test_verify_requires_password_step(self, api_client: tuple[TestClient, str, int]) -> None:
        """A valid TOTP code alone does not log anyone in."""
        client, _token, _uid = api_client
        client.cookies.clear()
        store = client.stores.user_store
        secret = pyotp.random_base32()
        victim = create_user(store, "totp-victim", is_system=True)
        other = create_user(store, "totp-other", is_system=True)
        for uid in (victim, other):
            store.update_user(uid, mfa_enabled=True, mfa_verified=True, mfa_secret=secret)
        code = pyotp.TOTP(secret).now()

        resp = client.post("/api/auth/mfa/verify", json={"userId": victim, "code": code})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "mfa_session_expired"

        resp = client.post("/api/auth/mfa/verify", json={"userId": victim, "code": code, "mfaToken": "forged"})
        assert resp.status_code == 401

        other_token = _login(client, "totp-other").json()["mfaToken"]
        resp = client.post("/api/auth/mfa/verify", json={"userId": victim, "code": code, "mfaToken": other_token})
        assert resp.status_code == 401, "A marker only vouches for the user who passed the password step"
        assert store.get_by_id(victim).failed_login_attempts == 0
        assert store.get_by_id(other).last_login is None
        assert "pcvisor.sid" not in client.cookies

    def test_verify_setup_without_setup(self, api_client: tuple[TestClient, str, int]) -> None:
        client, token, _uid = api_client
        resp = client.post("/api/auth/mfa/verify-setup", json={"code": "123456"}, headers=auth_headers(token))
        assert resp.status_code == 400
        assert "MFA setup not initiated" in resp.json()["error"]["message"]
