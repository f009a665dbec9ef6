"""Tests for the authentication and admin HTTP endpoints."""

import uuid

import pytest
from httpx import AsyncClient

from tests.conftest import TEST_PASSWORD, make_settings


async def _login(client: AsyncClient, email: str, password: str = TEST_PASSWORD, ip=None):
    headers = {"X-Forwarded-For": ip} if ip else None
    return await client.post(
        "/auth/login", json={"email": email, "password": password}, headers=headers
    )


def _bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def _assert_error(response, status_code: int, code: str) -> dict:
    assert response.status_code == status_code, response.text
    data = response.json()
    assert data["success"] is False
    assert data["code"] == code
    assert data["error"]
    assert data["timestamp"].endswith("Z")
    return data


class TestLogin:
    @pytest.mark.asyncio
    async def test_login_returns_token_pair(self, async_client, user, company):
        response = await _login(async_client, user.email)

        assert response.status_code == 200
        data = response.json()
        assert data["tokenType"] == "Bearer"
        assert data["expiresIn"] == 3600
        assert data["accessToken"] and data["refreshToken"]
        assert data["user"]["id"] == str(user.id)
        assert data["user"]["companyId"] == str(company.id)
        assert data["user"]["role"] == "user"
        assert data["user"]["company"]["modules"] == ["clients", "dashboard", "leads"]
        assert data["user"]["session"]["id"]

    @pytest.mark.asyncio
    async def test_login_email_is_case_insensitive(self, async_client, user):
        response = await _login(async_client, user.email.upper())
        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_wrong_password(self, async_client, user):
        response = await _login(async_client, user.email, "wrong-password")

        data = _assert_error(response, 401, "INVALID_CREDENTIALS")
        assert data["error"] == "Email ou senha inválidos"
        assert response.headers["WWW-Authenticate"] == "Bearer"

    @pytest.mark.asyncio
    async def test_unknown_email_same_error(self, async_client):
        response = await _login(async_client, "nobody@example.com")

        data = _assert_error(response, 401, "INVALID_CREDENTIALS")
        assert data["error"] == "Email ou senha inválidos"

    @pytest.mark.asyncio
    async def test_inactive_user_cannot_login(self, async_client, user_factory, company):
        inactive = await user_factory(company=company, status="inactive")
        response = await _login(async_client, inactive.email)
        _assert_error(response, 401, "USER_NOT_FOUND_OR_INACTIVE")

    @pytest.mark.asyncio
    async def test_lockout_after_repeated_failures(self, async_client, user, clock):
        # A new IP per attempt keeps the login rate limit out of the way
        for i in range(4):
            response = await _login(async_client, user.email, "wrong", ip=f"198.51.100.{i}")
            _assert_error(response, 401, "INVALID_CREDENTIALS")

        response = await _login(async_client, user.email, "wrong", ip="198.51.100.10")
        _assert_error(response, 423, "ACCOUNT_LOCKED")

        response = await _login(async_client, user.email, ip="198.51.100.11")
        _assert_error(response, 423, "ACCOUNT_LOCKED")

        clock.advance(30 * 60)
        response = await _login(async_client, user.email, ip="198.51.100.12")
        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_validation_error_envelope(self, async_client):
        response = await async_client.post("/auth/login", json={"email": "a@b.co"})
        _assert_error(response, 422, "VALIDATION_ERROR")


class TestSessionLifecycle:
    @pytest.mark.asyncio
    async def test_login_use_logout(self, async_client, user, clock):
        """Login, use the token, log out; the token then stops working."""
        token = (await _login(async_client, user.email)).json()["accessToken"]

        clock.advance(10)
        response = await async_client.get("/auth/me", headers=_bearer(token))
        assert response.status_code == 200
        assert response.json()["email"] == user.email

        response = await async_client.post("/auth/logout", headers=_bearer(token))
        assert response.status_code == 200
        assert response.json() == {"success": True, "message": "Logout realizado com sucesso"}

        response = await async_client.get("/auth/me", headers=_bearer(token))
        _assert_error(response, 401, "TOKEN_REVOKED")

    @pytest.mark.asyncio
    async def test_missing_token(self, async_client):
        response = await async_client.get("/auth/me")
        data = _assert_error(response, 401, "TOKEN_REQUIRED")
        assert data["error"] == "Token de acesso requerido"

    @pytest.mark.asyncio
    async def test_token_expires_at_exact_second(self, async_client, user, clock):
        token = (await _login(async_client, user.email)).json()["accessToken"]

        clock.advance(3599)
        response = await async_client.get("/auth/me", headers=_bearer(token))
        assert response.status_code == 200

        clock.advance(1)
        response = await async_client.get("/auth/me", headers=_bearer(token))
        _assert_error(response, 401, "TOKEN_EXPIRED")

    @pytest.mark.asyncio
    async def test_logout_all(self, async_client, user, login_as):
        first = await login_as(user)
        second = await login_as(user)

        response = await async_client.post("/auth/logout-all", headers=first)
        assert response.status_code == 200
        assert response.json()["message"] == "2 sessão(ões) encerrada(s)"

        response = await async_client.get("/auth/me", headers=second)
        _assert_error(response, 401, "SESSION_INVALID")

    @pytest.mark.asyncio
    async def test_list_sessions(self, async_client, user, login_as):
        current = await login_as(user)
        await login_as(user)

        response = await async_client.get("/auth/sessions", headers=current)

        assert response.status_code == 200
        sessions = response.json()["sessions"]
        assert len(sessions) == 2
        assert [s["isCurrent"] for s in sessions].count(True) == 1

    @pytest.mark.asyncio
    async def test_me_reports_session(self, async_client, user, company, login_as):
        response = await async_client.get("/auth/me", headers=await login_as(user))

        data = response.json()
        assert data["company"]["id"] == str(company.id)
        assert data["session"]["tokenId"]
        assert data["permissions"] == []


class TestSessionLimit:
    @pytest.fixture
    def settings(self):
        return make_settings(max_sessions_per_user=2)

    @pytest.mark.asyncio
    async def test_oldest_session_expired_on_new_login(self, async_client, user, clock):
        tokens = []
        for _ in range(3):
            tokens.append((await _login(async_client, user.email)).json()["accessToken"])
            clock.advance(1)

        response = await async_client.get("/auth/me", headers=_bearer(tokens[0]))
        _assert_error(response, 401, "SESSION_INVALID")
        for token in tokens[1:]:
            response = await async_client.get("/auth/me", headers=_bearer(token))
            assert response.status_code == 200


class TestSlidingExpiry:
    @pytest.fixture
    def settings(self):
        return make_settings(session_timeout_ms=600_000)

    @pytest.mark.asyncio
    async def test_activity_keeps_session_alive(self, async_client, user, clock):
        token = (await _login(async_client, user.email)).json()["accessToken"]

        clock.advance(400)
        assert (await async_client.get("/auth/me", headers=_bearer(token))).status_code == 200
        clock.advance(300)
        assert (await async_client.get("/auth/me", headers=_bearer(token))).status_code == 200


class TestFixedExpiry:
    @pytest.fixture
    def settings(self):
        return make_settings(session_timeout_ms=600_000, extend_on_activity=False)

    @pytest.mark.asyncio
    async def test_session_expires_despite_activity(self, async_client, user, clock):
        token = (await _login(async_client, user.email)).json()["accessToken"]

        clock.advance(400)
        assert (await async_client.get("/auth/me", headers=_bearer(token))).status_code == 200
        clock.advance(200)

        response = await async_client.get("/auth/me", headers=_bearer(token))
        data = _assert_error(response, 401, "SESSION_EXPIRED")
        assert data["error"] == "Sessão expirada"

        # The session is now expired for good
        response = await async_client.get("/auth/me", headers=_bearer(token))
        _assert_error(response, 401, "SESSION_INVALID")


class TestRefresh:
    @pytest.mark.asyncio
    async def test_refresh_rotates_tokens(self, async_client, user, clock):
        login = (await _login(async_client, user.email)).json()
        clock.advance(60)

        response = await async_client.post(
            "/auth/refresh", json={"refreshToken": login["refreshToken"]}
        )

        assert response.status_code == 200
        rotated = response.json()
        assert rotated["accessToken"] != login["accessToken"]
        assert rotated["user"]["session"]["id"] == login["user"]["session"]["id"]

        response = await async_client.get("/auth/me", headers=_bearer(rotated["accessToken"]))
        assert response.status_code == 200

        # The previous access token is no longer bound to the session
        response = await async_client.get("/auth/me", headers=_bearer(login["accessToken"]))
        _assert_error(response, 401, "SESSION_INVALID")

        # A refresh token can only be used once
        response = await async_client.post(
            "/auth/refresh", json={"refreshToken": login["refreshToken"]}
        )
        _assert_error(response, 401, "TOKEN_REVOKED")

    @pytest.mark.asyncio
    async def test_access_token_is_not_a_refresh_token(self, async_client, user):
        login = (await _login(async_client, user.email)).json()

        response = await async_client.post(
            "/auth/refresh", json={"refreshToken": login["accessToken"]}
        )
        _assert_error(response, 401, "TOKEN_INVALID")

    @pytest.mark.asyncio
    async def test_logout_revokes_refresh_token(self, async_client, user):
        login = (await _login(async_client, user.email)).json()

        response = await async_client.post(
            "/auth/logout",
            json={"refreshToken": login["refreshToken"]},
            headers=_bearer(login["accessToken"]),
        )
        assert response.status_code == 200

        response = await async_client.post(
            "/auth/refresh", json={"refreshToken": login["refreshToken"]}
        )
        _assert_error(response, 401, "TOKEN_REVOKED")


class TestChangePassword:
    @pytest.mark.asyncio
    async def test_wrong_current_password(self, async_client, user, login_as):
        response = await async_client.post(
            "/auth/change-password",
            json={"currentPassword": "nope", "newPassword": "a-brand-new-password"},
            headers=await login_as(user),
        )
        _assert_error(response, 400, "INVALID_CURRENT_PASSWORD")

    @pytest.mark.asyncio
    async def test_change_password_ends_sessions(self, async_client, user, login_as):
        headers = await login_as(user)
        other = await login_as(user)

        response = await async_client.post(
            "/auth/change-password",
            json={"currentPassword": TEST_PASSWORD, "newPassword": "a-brand-new-password"},
            headers=headers,
        )
        assert response.status_code == 200

        _assert_error(await async_client.get("/auth/me", headers=headers), 401, "TOKEN_REVOKED")
        _assert_error(await async_client.get("/auth/me", headers=other), 401, "SESSION_INVALID")

        assert (await _login(async_client, user.email)).status_code == 401
        assert (await _login(async_client, user.email, "a-brand-new-password")).status_code == 200


class TestRateLimits:
    @pytest.mark.asyncio
    async def test_login_limit(self, async_client):
        for _ in range(5):
            response = await _login(async_client, "ghost@example.com", "wrong")
            _assert_error(response, 401, "INVALID_CREDENTIALS")

        response = await _login(async_client, "ghost@example.com", "wrong")

        data = _assert_error(response, 429, "RATE_LIMIT_EXCEEDED")
        assert data["error"] == "Muitas tentativas de login"
        assert data["message"] == "Aguarde 15 minutos antes de tentar novamente"
        assert data["retryAfter"] == 900
        assert response.headers["Retry-After"] == "900"

    @pytest.mark.asyncio
    async def test_login_limit_window_passes(self, async_client, clock):
        for _ in range(6):
            await _login(async_client, "ghost@example.com", "wrong")

        clock.advance(15 * 60)
        response = await _login(async_client, "ghost@example.com", "wrong")
        _assert_error(response, 401, "INVALID_CREDENTIALS")

    @pytest.mark.asyncio
    async def test_super_admin_resets_counters(self, async_client, super_admin, login_as):
        for _ in range(6):
            await _login(async_client, "ghost@example.com", "wrong")

        response = await async_client.post(
            "/api/admin/rate-limits/reset",
            json={"target": "ghost@example.com"},
            headers=await login_as(super_admin),
        )
        assert response.status_code == 200
        assert response.json()["bucketsReset"] == 1

        response = await _login(async_client, "ghost@example.com", "wrong")
        _assert_error(response, 401, "INVALID_CREDENTIALS")

    @pytest.mark.asyncio
    async def test_company_admin_cannot_reset_counters(
        self, async_client, company_admin, login_as
    ):
        response = await async_client.post(
            "/api/admin/rate-limits/reset", json={}, headers=await login_as(company_admin)
        )
        _assert_error(response, 403, "SUPER_ADMIN_REQUIRED")


class TestAdminRevocation:
    @pytest.mark.asyncio
    async def test_company_admin_revokes_user_sessions(
        self, async_client, user, company_admin, login_as
    ):
        user_headers = await login_as(user)

        response = await async_client.post(
            f"/api/admin/users/{user.id}/revoke-sessions", headers=await login_as(company_admin)
        )

        assert response.status_code == 200
        assert response.json() == {
            "success": True,
            "userId": str(user.id),
            "sessionsRevoked": 1,
        }
        _assert_error(
            await async_client.get("/auth/me", headers=user_headers), 401, "SESSION_INVALID"
        )

    @pytest.mark.asyncio
    async def test_company_admin_limited_to_own_company(
        self, async_client, company_admin, user_factory, company_factory, login_as
    ):
        outsider = await user_factory(company=await company_factory(name="Other Ltda"))

        response = await async_client.post(
            f"/api/admin/users/{outsider.id}/revoke-sessions",
            headers=await login_as(company_admin),
        )
        _assert_error(response, 403, "COMPANY_ACCESS_DENIED")

    @pytest.mark.asyncio
    async def test_super_admin_crosses_companies(
        self, async_client, super_admin, user, login_as
    ):
        await login_as(user)
        response = await async_client.post(
            f"/api/admin/users/{user.id}/revoke-sessions", headers=await login_as(super_admin)
        )
        assert response.status_code == 200
        assert response.json()["sessionsRevoked"] == 1

    @pytest.mark.asyncio
    async def test_unknown_user(self, async_client, company_admin, login_as):
        response = await async_client.post(
            f"/api/admin/users/{uuid.uuid4()}/revoke-sessions",
            headers=await login_as(company_admin),
        )
        _assert_error(response, 404, "USER_NOT_FOUND")

    @pytest.mark.asyncio
    async def test_regular_user_rejected(self, async_client, user, login_as):
        response = await async_client.post(
            f"/api/admin/users/{user.id}/revoke-sessions", headers=await login_as(user)
        )
        _assert_error(response, 403, "ADMIN_REQUIRED")

    @pytest.mark.asyncio
    async def test_revoke_specific_token(self, async_client, user, company_admin, login_as):
        user_headers = await login_as(user)
        token = user_headers["Authorization"].removeprefix("Bearer ")

        response = await async_client.post(
            "/api/admin/tokens/revoke",
            json={"token": token},
            headers=await login_as(company_admin),
        )
        assert response.status_code == 200

        _assert_error(
            await async_client.get("/auth/me", headers=user_headers), 401, "TOKEN_REVOKED"
        )

    @pytest.mark.asyncio
    async def test_revoke_garbage_token(self, async_client, company_admin, login_as):
        response = await async_client.post(
            "/api/admin/tokens/revoke",
            json={"token": "garbage"},
            headers=await login_as(company_admin),
        )
        _assert_error(response, 400, "TOKEN_NOT_REVOCABLE")


class TestHealthAndHeaders:
    @pytest.mark.asyncio
    async def test_health(self, async_client):
        response = await async_client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy", "version": "1.0.0", "database": "connected"}

    @pytest.mark.asyncio
    async def test_security_headers_on_auth_errors(self, async_client):
        response = await async_client.get("/auth/me")
        assert response.status_code == 401
        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert response.headers["X-Frame-Options"] == "DENY"
        assert response.headers["Cache-Control"] == "no-store"
        assert "Strict-Transport-Security" not in response.headers

    @pytest.mark.asyncio
    async def test_hsts_over_https(self, async_client):
        response = await async_client.get("https://test/health")
        assert response.headers["Strict-Transport-Security"].startswith("max-age=")
