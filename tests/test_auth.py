"""
Tests for registration, login and bearer token handling.

Tests cover:
- Registration and duplicate usernames
- Login with valid and invalid credentials
- Missing (401) versus invalid (403) tokens on protected routes
- Token signing and verification
"""

from smsync.auth import Identity, issue_token, verify_token


class TestRegistration:
    """Test POST /auth/register."""

    def test_register_returns_token(self, client):
        """Test registration returns a usable token and user id."""
        response = client.post("/auth/register", json={"username": "carol", "password": "pw"})

        assert response.status_code == 200
        data = response.json()
        assert data["user_id"] > 0
        assert verify_token(data["token"]) == Identity(user_id=data["user_id"], username="carol")

    def test_duplicate_username(self, client):
        """Test registering the same username twice returns 409."""
        client.post("/auth/register", json={"username": "carol", "password": "pw"})
        response = client.post("/auth/register", json={"username": "carol", "password": "other"})

        assert response.status_code == 409
        assert response.json() == {"detail": "username already exists"}

    def test_missing_password(self, client):
        """Test registration without password is rejected."""
        response = client.post("/auth/register", json={"username": "carol"})

        assert response.status_code == 422

    def test_missing_username(self, client):
        """Test registration without username is rejected."""
        response = client.post("/auth/register", json={"password": "pw"})

        assert response.status_code == 422


class TestLogin:
    """Test POST /auth/login."""

    def test_login_success(self, client):
        """Test correct credentials return a token for the same user."""
        registered = client.post("/auth/register", json={"username": "carol", "password": "pw"}).json()

        response = client.post("/auth/login", json={"username": "carol", "password": "pw"})

        assert response.status_code == 200
        assert response.json()["user_id"] == registered["user_id"]

    def test_wrong_password_and_unknown_user_look_the_same(self, client):
        """Test unknown usernames are indistinguishable from wrong passwords."""
        client.post("/auth/register", json={"username": "carol", "password": "pw"})

        wrong_password = client.post("/auth/login", json={"username": "carol", "password": "nope"})
        unknown_user = client.post("/auth/login", json={"username": "mallory", "password": "pw"})

        assert wrong_password.status_code == 401
        assert unknown_user.status_code == 401
        assert wrong_password.json() == unknown_user.json() == {"detail": "invalid credentials"}


class TestProtectedRoutes:
    """Test the bearer token dependency."""

    def test_missing_token(self, client):
        """Test request without Authorization header returns 401."""
        response = client.get("/sync/conversations")

        assert response.status_code == 401
        assert response.json() == {"detail": "missing token"}

    def test_non_bearer_scheme(self, client):
        """Test a non-bearer Authorization header counts as missing."""
        response = client.get("/sync/conversations", headers={"Authorization": "Basic abc"})

        assert response.status_code == 401

    def test_invalid_token(self, client):
        """Test a garbage token returns 403."""
        response = client.get("/sync/conversations", headers={"Authorization": "Bearer not-a-token"})

        assert response.status_code == 403
        assert response.json() == {"detail": "invalid token"}

    def test_token_signed_with_other_secret(self, client):
        """Test a token signed with a different secret returns 403."""
        token = issue_token(Identity(user_id=1, username="alice"), secret="wrong_secret")

        response = client.get("/sync/conversations", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 403

    def test_valid_token(self, client, auth_headers):
        """Test a registered user's token is accepted."""
        response = client.get("/sync/conversations", headers=auth_headers)

        assert response.status_code == 200
        assert response.json() == []


class TestTokens:
    """Test token signing helpers directly."""

    def test_tampered_claims_rejected(self):
        """Test changing the claims segment invalidates the signature."""
        token = issue_token(Identity(user_id=1, username="alice"), secret="k")
        other = issue_token(Identity(user_id=2, username="bob"), secret="k")
        forged = other.split(".")[0] + "." + token.split(".")[1]

        assert verify_token(forged, secret="k") is None

    def test_token_without_signature(self):
        """Test a token missing its signature segment is rejected."""
        assert verify_token("abc", secret="k") is None
        assert verify_token("abc.", secret="k") is None
