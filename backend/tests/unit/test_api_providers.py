"""Tests for the /api/v1/providers endpoints."""

from urllib.parse import parse_qs, urlparse

from httpx import AsyncClient

from gatekeep.core.config import settings
from gatekeep.core.oauth import STATE_COOKIE_NAME
from gatekeep.core.oauth_client import OAuthProfile
from gatekeep.models.user import User
from gatekeep.services.identity_service import IdentityService
from tests.conftest import TEST_PASSWORD, FakeEmailSender, FakeOAuthClient, register_verified

_PROVIDERS = "/api/v1/providers"


async def _login(client: AsyncClient, email: str = "alice@example.com") -> None:
    resp = await client.post(
        "/api/v1/auth/login", json={"email": email, "password": TEST_PASSWORD}
    )
    assert resp.status_code == 200


async def _link_via_http(client: AsyncClient, provider: str = "github") -> str:
    """Run the link flow through the API and return the callback Location."""
    start = await client.get(f"{_PROVIDERS}/{provider}/link")
    assert start.status_code == 302
    state = parse_qs(urlparse(start.headers["location"]).query)["state"][0]

    resp = await client.get(
        f"{_PROVIDERS}/{provider}/callback", params={"code": "code-1", "state": state}
    )
    assert resp.status_code == 302
    return resp.headers["location"]


class TestLinkFlow:
    async def test_link_requires_session(self, client: AsyncClient):
        resp = await client.get(f"{_PROVIDERS}/github/link")
        assert resp.status_code == 401

    async def test_initiate_uses_link_callback(self, client: AsyncClient, verified_user: User):
        await _login(client)
        resp = await client.get(f"{_PROVIDERS}/github/link")
        query = parse_qs(urlparse(resp.headers["location"]).query)
        assert query["redirect_uri"] == [f"{settings.backend_url}/api/v1/providers/github/callback"]

    async def test_successful_link_redirects_and_lists(
        self, client: AsyncClient, verified_user: User
    ):
        await _login(client)

        location = await _link_via_http(client)

        assert location == f"{settings.frontend_url}/?linked=github"
        resp = await client.get(_PROVIDERS)
        data = resp.json()["data"]
        assert [p["provider_type"] for p in data] == ["github"]
        assert data[0]["provider_user_id"] == "github-user-1"
        assert "access_token" not in data[0]

    async def test_identity_held_by_other_user(
        self,
        client: AsyncClient,
        service: IdentityService,
        email_sender: FakeEmailSender,
        verified_user: User,
    ):
        await register_verified(service, email_sender, email="bob@example.com")
        await _login(client, "bob@example.com")
        await _link_via_http(client)

        await _login(client, verified_user.email)
        location = await _link_via_http(client)

        assert location == f"{settings.frontend_url}/?error=provider_already_linked"

    async def test_provider_failure_redirects_with_oauth_failed(
        self, client: AsyncClient, verified_user: User, google: FakeOAuthClient
    ):
        google.profile = OAuthProfile(
            provider_user_id="g-1", email="g@example.com", email_verified=False
        )
        await _login(client)

        location = await _link_via_http(client, "google")

        assert location == f"{settings.frontend_url}/?error=oauth_failed"

    async def test_callback_with_forged_state(self, client: AsyncClient, verified_user: User):
        await _login(client)
        await client.get(f"{_PROVIDERS}/github/link")

        resp = await client.get(
            f"{_PROVIDERS}/github/callback", params={"code": "c", "state": "forged"}
        )

        assert resp.headers["location"] == f"{settings.frontend_url}/?error=invalid_state"

    async def test_callback_after_logout_redirects_and_clears_state(
        self, client: AsyncClient, service: IdentityService, verified_user: User
    ):
        await _login(client)
        start = await client.get(f"{_PROVIDERS}/github/link")
        state = parse_qs(urlparse(start.headers["location"]).query)["state"][0]
        await client.post("/api/v1/auth/logout")

        resp = await client.get(
            f"{_PROVIDERS}/github/callback", params={"code": "c", "state": state}
        )

        assert resp.status_code == 302
        assert resp.headers["location"] == f"{settings.frontend_url}/?error=unauthorized"
        set_cookies = resp.headers.get_list("set-cookie")
        assert any(c.startswith(f"{STATE_COOKIE_NAME}=") for c in set_cookies)
        assert await service.list_providers(verified_user.id) == []


class TestUnlink:
    async def test_unlink_returns_204(self, client: AsyncClient, verified_user: User):
        await _login(client)
        await _link_via_http(client)

        resp = await client.delete(f"{_PROVIDERS}/github")

        assert resp.status_code == 204
        assert (await client.get(_PROVIDERS)).json()["data"] == []

    async def test_unlink_missing_is_404(self, client: AsyncClient, verified_user: User):
        await _login(client)
        resp = await client.delete(f"{_PROVIDERS}/google")
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "PROVIDER_NOT_FOUND"

    async def test_last_method_is_409(
        self,
        client: AsyncClient,
        service: IdentityService,
        verified_user: User,
    ):
        await _login(client)
        await _link_via_http(client)
        # Drop the password so the link is the only way in
        user = await service.get_user(verified_user.id)
        user.password_hash = None
        await service.users.save(user)

        resp = await client.delete(f"{_PROVIDERS}/github")

        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "LAST_AUTH_METHOD"
