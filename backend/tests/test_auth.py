"""
Authentication tests.

Verifies:
- Protected endpoints return 401 without a valid token
- Login issues a token that /me accepts; logout revokes it
- Passwords are stored as bcrypt hashes
"""

import pytest

from app.extensions import db
from app.models import SessionToken, User
from app.services.auth_service import (
    PasswordValidationError,
    authenticate,
    create_user,
    verify_password,
)
from app.services.session_service import hash_token

TEST_PASSWORD = "Password123!"


# =============================================================================
# UNAUTHENTICATED ACCESS (401)
# =============================================================================


class TestUnauthenticatedAccess:
    """All protected endpoints return 401 without a token."""

    @pytest.mark.parametrize(
        "method,path",
        [
            ("GET", "/api/auth/me"),
            ("GET", "/api/products"),
            ("POST", "/api/products"),
            ("GET", "/api/orders"),
            ("POST", "/api/orders"),
            ("PUT", "/api/orders/1/payment"),
            ("DELETE", "/api/orders/1"),
            ("GET", "/api/transactions"),
            ("POST", "/api/transactions"),
            ("GET", "/api/income-expenses"),
            ("GET", "/api/reports/sales-summary"),
            ("GET", "/api/preview"),
            ("POST", "/api/preview"),
        ],
    )
    def test_requires_auth(self, client, db_session, method, path):
        resp = getattr(client, method.lower())(path)
        assert resp.status_code == 401, f"{method} {path} returned {resp.status_code}"

    def test_garbage_token(self, client, db_session):
        resp = client.get("/api/auth/me", headers={"Authorization": "Bearer nope"})
        assert resp.status_code == 401
        assert resp.json["message"] == "Invalid or expired token"

    def test_health_is_public(self, client, db_session):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        assert resp.json["status"] == "healthy"


# =============================================================================
# LOGIN / LOGOUT
# =============================================================================


class TestLoginFlow:

    def test_login_and_me(self, client, staff_user):
        login = client.post("/api/auth/login", json={"username": "staff", "password": TEST_PASSWORD})

        assert login.status_code == 200
        assert login.json["user"]["role"] == "staff"
        token = login.json["token"]
        assert len(token) == 64

        me = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert me.status_code == 200
        assert me.json["username"] == "staff"

    def test_token_stored_hashed(self, client, staff_user):
        token = client.post("/api/auth/login", json={"username": "staff", "password": TEST_PASSWORD}).json["token"]

        stored = db.session.query(SessionToken).one()
        assert stored.token_hash == hash_token(token)
        assert stored.token_hash != token

    def test_wrong_password(self, client, staff_user):
        resp = client.post("/api/auth/login", json={"username": "staff", "password": "wrong-password"})
        assert resp.status_code == 400
        assert resp.json["message"] == "Invalid credentials"

    def test_missing_fields(self, client, db_session):
        resp = client.post("/api/auth/login", json={"username": "staff"})
        assert resp.status_code == 400

    def test_logout_revokes(self, client, staff_headers):
        assert client.get("/api/auth/me", headers=staff_headers).status_code == 200

        client.post("/api/auth/logout", headers=staff_headers)

        assert client.get("/api/auth/me", headers=staff_headers).status_code == 401

    def test_inactive_user_rejected(self, client, staff_user, staff_headers):
        staff_user.is_active = False
        db.session.commit()

        assert client.get("/api/auth/me", headers=staff_headers).status_code == 401


# =============================================================================
# ACCOUNTS
# =============================================================================


class TestAccounts:

    def test_password_hashed(self, staff_user):
        user = db.session.get(User, staff_user.id)
        assert user.password_hash.startswith("$2")
        assert verify_password(TEST_PASSWORD, user.password_hash)
        assert not verify_password("something-else", user.password_hash)

    def test_malformed_hash(self):
        assert verify_password(TEST_PASSWORD, "not-a-hash") is False

    def test_duplicate_username(self, staff_user):
        with pytest.raises(ValueError):
            create_user(username="staff", password=TEST_PASSWORD)

    def test_weak_password(self, db_session):
        with pytest.raises(PasswordValidationError):
            create_user(username="new", password="short")

    def test_unknown_role(self, db_session):
        with pytest.raises(ValueError):
            create_user(username="new", password=TEST_PASSWORD, role="owner")

    def test_authenticate_updates_last_login(self, staff_user):
        user = authenticate("staff", TEST_PASSWORD)
        assert user is not None
        assert user.last_login_at is not None
        assert authenticate("staff", "wrong-password") is None
