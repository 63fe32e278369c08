"""
tests/test_settings_routes.py -- Integration tests for the admin settings sections.

Coverage:
  - Organization: public subset without auth, partial PATCH, invalid color
  - Uploads: logo upload + static serving, MIME allow-list, type check, size cap, delete
  - Notifications: SMTP password masked on read, mask echo does not overwrite
  - Security / system config: partial PATCH, audit entries
"""

from __future__ import annotations

from fastapi.testclient import TestClient

from admin.models import NotificationSettings, SecuritySettings
from audit.store import AuditLogFilter
from conftest import auth_headers

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64


class TestOrganization:
    def test_public_branding_without_auth(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        client.cookies.clear()
        resp = client.get("/api/organization/public")
        assert resp.status_code == 200
        data = resp.json()
        assert data["organizationName"] == "pcvisor"
        assert data["primaryColor"] == "#0066FF"
        assert "email" not in data, "Contact details are not part of the public subset"

    def test_full_settings_require_auth(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        client.cookies.clear()
        assert client.get("/api/organization").status_code == 401

    def test_partial_update(self, api_client: tuple[TestClient, str, int]) -> None:
        """PATCH merges only the keys sent; other fields keep their values."""
        client, token, _uid = api_client
        headers = auth_headers(token)
        resp = client.patch("/api/organization", json={"organizationName": "Acme Corp"}, headers=headers)
        assert resp.status_code == 200, resp.text
        resp = client.patch("/api/organization", json={"city": "Pune"}, headers=headers)
        data = resp.json()
        assert data["organizationName"] == "Acme Corp"
        assert data["city"] == "Pune"
        assert data["primaryColor"] == "#0066FF"

        logs, _ = client.stores.audit_store.list_logs(AuditLogFilter(action="update_organization_settings"))
        assert logs and logs[0].category == "settings"

    def test_invalid_color_rejected(self, api_client: tuple[TestClient, str, int]) -> None:
        client, token, _uid = api_client
        resp = client.patch("/api/organization", json={"primaryColor": "red"}, headers=auth_headers(token))
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "validation_error"


class TestUploads:
    def test_upload_logo(self, api_client: tuple[TestClient, str, int]) -> None:
        client, token, _uid = api_client
        resp = client.post(
            "/api/organization/upload",
            files={"file": ("../../evil.png", PNG_BYTES, "image/png")},
            data={"type": "logo"},
            headers=auth_headers(token),
        )
        assert resp.status_code == 200, resp.text
        data = resp.json()
        assert data["message"] == "File uploaded successfully"
        assert data["url"].startswith("/uploads/logo-")
        assert data["url"].endswith(".png")
        assert "evil" not in data["url"], "Client file names must be ignored"
        assert data["settings"]["logoUrl"] == data["url"]

        served = client.get(data["url"])
        assert served.status_code == 200
        assert served.content == PNG_BYTES

        resp = client.request("DELETE", "/api/organization/upload", json={"type": "logo"}, headers=auth_headers(token))
        assert resp.status_code == 200
        assert resp.json()["settings"]["logoUrl"] is None
        assert client.get(data["url"]).status_code == 404

    def test_disallowed_mime_type(self, api_client: tuple[TestClient, str, int]) -> None:
        client, token, _uid = api_client
        resp = client.post(
            "/api/organization/upload",
            files={"file": ("notes.txt", b"hello", "text/plain")},
            data={"type": "logo"},
            headers=auth_headers(token),
        )
        assert resp.status_code == 400
        assert "Only PNG, JPEG, GIF, SVG, and ICO" in resp.json()["error"]["message"]

    def test_unknown_branding_type(self, api_client: tuple[TestClient, str, int]) -> None:
        client, token, _uid = api_client
        resp = client.post(
            "/api/organization/upload",
            files={"file": ("a.png", PNG_BYTES, "image/png")},
            data={"type": "banner"},
            headers=auth_headers(token),
        )
        assert resp.status_code == 400
        assert resp.json()["error"]["message"] == "Invalid file type. Must be 'logo' or 'favicon'"

    def test_missing_file(self, api_client: tuple[TestClient, str, int]) -> None:
        client, token, _uid = api_client
        resp = client.post("/api/organization/upload", data={"type": "logo"}, headers=auth_headers(token))
        assert resp.status_code == 400
        assert resp.json()["error"]["message"] == "No file uploaded"

    def test_file_too_large(self, api_client: tuple[TestClient, str, int]) -> None:
        client, token, _uid = api_client
        big = b"\x00" * (2 * 1024 * 1024 + 1)
        resp = client.post(
            "/api/organization/upload",
            files={"file": ("big.png", big, "image/png")},
            data={"type": "favicon"},
            headers=auth_headers(token),
        )
        assert resp.status_code == 413
        assert resp.json()["error"]["code"] == "file_too_large"

    def test_delete_invalid_type(self, api_client: tuple[TestClient, str, int]) -> None:
        client, token, _uid = api_client
        resp = client.request("DELETE", "/api/organization/upload", json={"type": "x"}, headers=auth_headers(token))
        assert resp.status_code == 400


class TestNotificationSettings:
    def test_smtp_password_masked(self, api_client: tuple[TestClient, str, int]) -> None:
        client, token, _uid = api_client
        headers = auth_headers(token)
        resp = client.patch(
            "/api/notifications",
            json={"smtpHost": "smtp.example.com", "smtpPassword": "hunter2"},
            headers=headers,
        )
        assert resp.status_code == 200, resp.text
        assert resp.json()["smtpPassword"] == "********"
        assert client.get("/api/notifications", headers=headers).json()["smtpPassword"] == "********"

        # Saving the form unchanged echoes the mask back; the real password survives.
        client.patch("/api/notifications", json={"smtpPassword": "********", "smtpPort": "465"}, headers=headers)
        stored = client.stores.settings_store.get(NotificationSettings)
        assert stored.smtp_password == "hunter2"
        assert stored.smtp_port == "465"

    def test_test_email_requires_enabled(self, api_client: tuple[TestClient, str, int]) -> None:
        client, token, _uid = api_client
        resp = client.post("/api/notifications/test-email", headers=auth_headers(token))
        assert resp.status_code == 400
        assert resp.json()["error"]["message"] == "Email notifications are not enabled"


class TestSecurityAndSystem:
    def test_security_update(self, api_client: tuple[TestClient, str, int]) -> None:
        client, token, _uid = api_client
        headers = auth_headers(token)
        resp = client.patch("/api/security", json={"maxLoginAttempts": "7"}, headers=headers)
        assert resp.status_code == 200
        assert resp.json()["maxLoginAttempts"] == "7"
        assert client.stores.settings_store.get(SecuritySettings).max_attempts == 7
        client.patch("/api/security", json={"maxLoginAttempts": "5"}, headers=headers)

        logs, _ = client.stores.audit_store.list_logs(AuditLogFilter(action="update_security_settings"))
        assert logs and logs[0].category == "security"

    def test_security_rejects_non_numeric(self, api_client: tuple[TestClient, str, int]) -> None:
        client, token, _uid = api_client
        resp = client.patch("/api/security", json={"maxLoginAttempts": "lots"}, headers=auth_headers(token))
        assert resp.status_code == 400

    def test_system_config(self, api_client: tuple[TestClient, str, int]) -> None:
        client, token, _uid = api_client
        headers = auth_headers(token)
        assert client.get("/api/system-config", headers=headers).json()["timezone"] == "Asia/Kolkata"
        resp = client.patch("/api/system-config", json={"maintenanceMode": True}, headers=headers)
        assert resp.status_code == 200
        assert resp.json()["maintenanceMode"] is True
