"""
HTTP tests for admin login, logout and bearer-token authentication.
"""

import pytest

from app.core.security import create_access_token, verify_access_token
from app.modules.security.allowlist import REASON_GLOBAL, AllowlistDecision

ROUTES = "app.modules.auth.routes"
DEPS = "app.modules.auth.dependencies"


@pytest.fixture
def record_failed(mocker):
    return mocker.patch(f"{ROUTES}.record_failed_login", return_value=False)


@pytest.fixture
def audit(mocker):
    return mocker.patch(f"{ROUTES}.log_admin_activity")


class TestLogin:
    """POST /api/auth/login"""

    def test_missing_fields(self, client, db_session, record_failed):
        response = client.post("/api/auth/login", json={"email": "ops@example.com"})

        assert response.status_code == 400
        assert response.json() == {"error": "Email and password are required"}
        record_failed.assert_not_called()

    def test_unknown_email_recorded_as_failed_attempt(self, client, db_session, scalar_result, record_failed):
        db_session.execute.return_value = scalar_result(None)

        response = client.post(
            "/api/auth/login",
            json={"email": "  Nobody@Example.com ", "password": "whatever"},
        )

        assert response.status_code == 401
        assert response.json() == {"error": "Invalid login credentials"}
        record_failed.assert_awaited_once_with("nobody@example.com", "testclient", is_admin=True)

    def test_wrong_password(self, client, db_session, scalar_result, record_failed, make_admin):
        db_session.execute.return_value = scalar_result(make_admin(password="right"))

        response = client.post(
            "/api/auth/login",
            json={"email": "ops@example.com", "password": "wrong"},
        )

        assert response.status_code == 401
        record_failed.assert_awaited_once()

    def test_inactive_admin(self, client, db_session, scalar_result, record_failed, make_admin):
        db_session.execute.return_value = scalar_result(make_admin(is_active=False))

        response = client.post(
            "/api/auth/login",
            json={"email": "ops@example.com", "password": "correct-horse"},
        )

        assert response.status_code == 403
        assert response.json() == {"error": "Access denied. You are not authorized as an admin."}
        record_failed.assert_not_called()

    def test_ip_not_allowlisted(self, client, db_session, scalar_result, mocker, audit, make_admin):
        admin = make_admin()
        db_session.execute.return_value = scalar_result(admin)
        mocker.patch(
            f"{ROUTES}.check_allowlist",
            return_value=AllowlistDecision(allowed=False, reason=REASON_GLOBAL),
        )

        response = client.post(
            "/api/auth/login",
            json={"email": "ops@example.com", "password": "correct-horse"},
        )

        assert response.status_code == 403
        assert response.json() == {"error": REASON_GLOBAL}
        assert audit.call_args.args == (admin.id, "admin_login_blocked_ip")
        assert audit.call_args.kwargs["ip"] == "testclient"

    def test_success(self, client, db_session, scalar_result, mocker, audit, make_admin):
        admin = make_admin()
        db_session.execute.return_value = scalar_result(admin)
        mocker.patch(f"{ROUTES}.check_allowlist", return_value=AllowlistDecision(allowed=True))

        response = client.post(
            "/api/auth/login",
            json={"email": "OPS@example.com", "password": "correct-horse"},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["token_type"] == "bearer"
        assert body["admin"]["id"] == str(admin.id)
        assert "password_hash" not in body["admin"]

        claims = verify_access_token(body["access_token"])
        assert claims["sub"] == str(admin.id)
        assert claims["role"] == "ops"

        assert admin.last_login_at is not None
        assert audit.call_args.args == (admin.id, "admin_login")

    def test_allowlist_storage_error_still_logs_in(self, client, db_session, scalar_result, mocker, audit, make_admin):
        admin = make_admin()
        db_session.execute.return_value = scalar_result(admin)
        mocker.patch(
            "app.modules.security.allowlist.load_global_entries",
            side_effect=RuntimeError("relation does not exist"),
        )
        mocker.patch("app.core.failure_policy.capture_business_error")

        response = client.post(
            "/api/auth/login",
            json={"email": "ops@example.com", "password": "correct-horse"},
        )

        assert response.status_code == 200
        db_session.begin_nested.assert_called_once()
        db_session.rollback.assert_not_called()
        db_session.commit.assert_awaited()
        assert audit.call_args.args == (admin.id, "admin_login")

    def test_login_rate_limited(self, client, db_session, record_failed):
        statuses = [
            client.post("/api/auth/login", json={}).status_code
            for _ in range(11)
        ]

        assert statuses[:10] == [400] * 10
        assert statuses[10] == 429


class TestBearerAuthentication:
    """get_current_admin via GET /api/auth/me"""

    def test_no_token(self, client, db_session):
        response = client.get("/api/auth/me")

        assert response.status_code == 401
        assert response.json() == {"error": "No token provided"}
        assert response.headers["WWW-Authenticate"] == "Bearer"

    def test_invalid_token(self, client, db_session):
        response = client.get("/api/auth/me", headers={"Authorization": "Bearer not-a-jwt"})

        assert response.status_code == 401
        assert response.json() == {"error": "Invalid or expired token"}

    def test_admin_not_found(self, client, db_session, scalar_result, make_admin):
        token, _ = create_access_token(make_admin().id, "ops")
        db_session.execute.return_value = scalar_result(None)

        response = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 401
        assert response.json() == {"error": "Admin not found"}

    def test_inactive_admin(self, client, db_session, scalar_result, make_admin):
        admin = make_admin(is_active=False)
        token, _ = create_access_token(admin.id, admin.role)
        db_session.execute.return_value = scalar_result(admin)

        response = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 403
        assert response.json() == {"error": "Admin account is inactive"}

    def test_allowlist_enforced_per_request(self, client, db_session, scalar_result, mocker, make_admin):
        admin = make_admin()
        token, _ = create_access_token(admin.id, admin.role)
        db_session.execute.return_value = scalar_result(admin)
        mocker.patch(
            f"{DEPS}.check_allowlist",
            return_value=AllowlistDecision(allowed=False, reason=REASON_GLOBAL),
        )

        response = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 403
        assert response.json() == {"error": REASON_GLOBAL}

    def test_profile(self, client, db_session, scalar_result, mocker, make_admin):
        admin = make_admin()
        token, _ = create_access_token(admin.id, admin.role)
        db_session.execute.return_value = scalar_result(admin)
        mocker.patch(f"{DEPS}.check_allowlist", return_value=AllowlistDecision(allowed=True))

        response = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 200
        assert response.json()["email"] == "ops@example.com"


class TestLogout:
    def test_logout_audited(self, client, login_as, audit, make_admin):
        admin = login_as(make_admin())

        response = client.post("/api/auth/logout")

        assert response.status_code == 200
        assert response.json() == {"success": True, "message": "Logged out successfully"}
        assert audit.call_args.args == (admin.id, "admin_logout")
