"""Integration tests for authentication endpoints."""

from datetime import timedelta

import pytest
from sqlmodel import select

from library_api.core.security import TokenIssuer
from library_api.models import User


@pytest.mark.asyncio
class TestRegister:
    """Tests for registration endpoint."""

    async def test_register_success(self, client, test_session):
        """New accounts are always readers."""
        response = await client.post(
            "/api/v1/auth/register",
            json={
                "name": "Anna",
                "email": "anna@example.com",
                "password": "secret1",
                "mailing": True,
            },
        )

        assert response.status_code == 201
        data = response.json()
        assert data["email"] == "anna@example.com"
        assert data["role"] == "reader"
        assert data["mailing"] is True
        assert "password" not in data
        assert "hashed_password" not in data

        result = await test_session.execute(select(User).where(User.email == "anna@example.com"))
        user = result.scalar_one()
        assert user.hashed_password != "secret1"

    async def test_register_duplicate_email(self, client, reader_user):
        response = await client.post(
            "/api/v1/auth/register",
            json={"name": "Again", "email": "reader@test.com", "password": "secret1"},
        )

        assert response.status_code == 400
        assert response.json()["detail"] == "Email already registered"

    async def test_register_invalid_email(self, client):
        response = await client.post(
            "/api/v1/auth/register",
            json={"name": "Anna", "email": "not-an-email", "password": "secret1"},
        )

        assert response.status_code == 422


@pytest.mark.asyncio
class TestLogin:
    """Tests for login endpoint."""

    async def test_login_success(self, client, login, admin_user):
        """Test successful login sets both session cookies."""
        response = await login("admin@test.com", "admin123")

        assert response.status_code == 200
        assert response.json()["message"] == "User authorization successfully"
        assert response.cookies.get("jwt")
        assert response.cookies.get("refreshToken") == admin_user.refresh_token

        set_cookie = " ".join(response.headers.get_list("set-cookie")).lower()
        assert "httponly" in set_cookie
        assert "max-age=2592000" in set_cookie

    async def test_login_wrong_password(self, client, login, admin_user, test_session):
        """Test login with wrong password leaves no session behind."""
        response = await login("admin@test.com", "wrongpassword")

        assert response.status_code == 401
        assert response.json()["detail"] == "Incorrect email or password"
        assert "jwt" not in response.cookies
        assert "refreshToken" not in response.cookies

        await test_session.refresh(admin_user)
        assert admin_user.refresh_token is None

    async def test_login_with_registered_spelling(self, client, login):
        """The address is normalized the same way on register and login."""
        registered = await client.post(
            "/api/v1/auth/register",
            json={"name": "Anna", "email": "Anna@Example.COM", "password": "secret1"},
        )
        assert registered.status_code == 201

        response = await login("Anna@Example.COM", "secret1")

        assert response.status_code == 200

    async def test_login_nonexistent_user(self, client, login):
        """Test login with nonexistent user."""
        response = await login("nobody@test.com", "password")

        assert response.status_code == 401


@pytest.mark.asyncio
class TestAccessGate:
    """Tests for cookie authentication on protected routes."""

    async def test_me_authenticated(self, admin_client):
        """Test getting current user when authenticated."""
        response = await admin_client.get("/api/v1/auth/me")

        assert response.status_code == 200
        data = response.json()
        assert data["email"] == "admin@test.com"
        assert data["role"] == "admin"
        assert data["mailing"] is False

    async def test_me_unauthenticated(self, client):
        """Test getting current user when not authenticated."""
        response = await client.get("/api/v1/auth/me")

        assert response.status_code == 401
        assert response.json()["detail"] == "Missing or invalid token"

    async def test_expired_access_token_is_refreshed(self, reader_client, reader_user, settings):
        """An expired jwt with a valid refresh cookie renews the session transparently."""
        old_refresh = reader_user.refresh_token
        expired = TokenIssuer(settings).issue_access_token(
            reader_user, expires_delta=timedelta(seconds=-10)
        )
        reader_client.cookies.clear()
        reader_client.cookies.set("jwt", expired)
        reader_client.cookies.set("refreshToken", old_refresh)

        response = await reader_client.get("/api/v1/auth/me")

        assert response.status_code == 200
        assert response.json()["email"] == "reader@test.com"
        new_refresh = response.cookies.get("refreshToken")
        assert new_refresh and new_refresh != old_refresh
        assert response.cookies.get("jwt")
        assert reader_user.refresh_token == new_refresh

    async def test_rotated_cookies_survive_not_found(self, reader_client, reader_user, settings):
        """A refresh followed by a 404 still hands out the rotated session."""
        old_refresh = reader_user.refresh_token
        expired = TokenIssuer(settings).issue_access_token(
            reader_user, expires_delta=timedelta(seconds=-10)
        )
        reader_client.cookies.clear()
        reader_client.cookies.set("jwt", expired)
        reader_client.cookies.set("refreshToken", old_refresh)

        response = await reader_client.get("/api/v1/books/999")

        assert response.status_code == 404
        new_refresh = response.cookies.get("refreshToken")
        assert new_refresh and new_refresh != old_refresh
        assert response.cookies.get("jwt")

        reader_client.cookies.clear()
        reader_client.cookies.set("refreshToken", new_refresh)
        follow_up = await reader_client.get("/api/v1/auth/me")
        assert follow_up.status_code == 200

    async def test_rotated_cookies_survive_forbidden(self, reader_client, reader_user, settings):
        """A refresh followed by a 403 still hands out the rotated session."""
        old_refresh = reader_user.refresh_token
        expired = TokenIssuer(settings).issue_access_token(
            reader_user, expires_delta=timedelta(seconds=-10)
        )
        reader_client.cookies.clear()
        reader_client.cookies.set("jwt", expired)
        reader_client.cookies.set("refreshToken", old_refresh)

        response = await reader_client.delete("/api/v1/books/1")

        assert response.status_code == 403
        new_refresh = response.cookies.get("refreshToken")
        assert new_refresh and new_refresh != old_refresh

        reader_client.cookies.clear()
        reader_client.cookies.set("refreshToken", new_refresh)
        follow_up = await reader_client.get("/api/v1/auth/me")
        assert follow_up.status_code == 200

    async def test_garbage_access_token_without_refresh(self, client, reader_user):
        client.cookies.set("jwt", "garbage")

        response = await client.get("/api/v1/auth/me")

        assert response.status_code == 401
        assert response.json()["detail"] == "Missing or invalid token"

    async def test_expired_refresh_token(self, client, reader_user, test_session, settings):
        """Both tokens expired means the user has to log in again."""
        reader_user.refresh_token = "stale-token"
        reader_user.refresh_token_expires_at = reader_user.created_at - timedelta(days=1)
        test_session.add(reader_user)
        await test_session.commit()
        client.cookies.set("refreshToken", "stale-token")

        response = await client.get("/api/v1/auth/me")

        assert response.status_code == 401

    async def test_reused_refresh_token_rejected(self, reader_client, reader_user):
        """A refresh token only works once."""
        old_refresh = reader_user.refresh_token
        first = await reader_client.post("/api/v1/auth/refresh")
        assert first.status_code == 200

        reader_client.cookies.clear()
        reader_client.cookies.set("refreshToken", old_refresh)
        second = await reader_client.post("/api/v1/auth/refresh")

        assert second.status_code == 401


@pytest.mark.asyncio
class TestLogout:
    """Tests for logout endpoint."""

    async def test_logout_success(self, admin_client, admin_user):
        """Test successful logout revokes the refresh token."""
        response = await admin_client.post("/api/v1/auth/logout")

        assert response.status_code == 200
        assert response.json()["message"] == "Logged out successfully"
        assert admin_user.refresh_token is None

        me = await admin_client.get("/api/v1/auth/me")
        assert me.status_code == 401
