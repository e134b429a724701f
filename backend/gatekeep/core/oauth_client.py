"""OAuth HTTP clients: authorize URLs, token exchange, and profile fetching.

One client per provider, all satisfying the OAuthClient protocol so the
identity service can treat GitHub and Google uniformly. Every network or
protocol failure surfaces as UpstreamError; provider response bodies are
never passed through to callers.
"""

import logging
from dataclasses import dataclass
from typing import Any, Protocol
from urllib.parse import urlencode

import httpx

from gatekeep.core.config import settings
from gatekeep.core.errors import UpstreamError
from gatekeep.core.oauth import OAuthProviderConfig, get_provider_config

logger = logging.getLogger(__name__)

# HTTP client timeout for OAuth token exchange and userinfo
_OAUTH_HTTP_TIMEOUT = 10.0

_GITHUB_EMAILS_URL = "https://api.github.com/user/emails"
_GITHUB_ACCEPT = "application/vnd.github+json"


@dataclass(frozen=True)
class OAuthProfile:
    """Identity asserted by an OAuth provider.

    Attributes:
        provider_user_id: Stable provider-side user id.
        email: Email address the provider vouches for.
        email_verified: Whether the provider verified the address.
        name: Display name, if shared.
        avatar_url: Avatar URL, if shared.
    """

    provider_user_id: str
    email: str
    email_verified: bool
    name: str | None = None
    avatar_url: str | None = None


class OAuthClient(Protocol):
    """Per-provider OAuth client used by the identity service."""

    provider: str

    def authorize_url(self, redirect_uri: str, state: str) -> str: ...

    async def exchange(self, code: str, redirect_uri: str) -> str: ...

    async def fetch_profile(self, access_token: str) -> OAuthProfile: ...


class _HTTPOAuthClient:
    """Shared authorization-code flow over httpx."""

    provider: str = ""

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = _OAUTH_HTTP_TIMEOUT,
    ) -> None:
        self.client_id = client_id
        self._client_secret = client_secret
        self._transport = transport
        self._timeout = timeout
        self.config: OAuthProviderConfig = get_provider_config(self.provider)

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self._transport, timeout=self._timeout)

    def authorize_url(self, redirect_uri: str, state: str) -> str:
        """Build the provider authorization URL.

        Args:
            redirect_uri: Callback URL registered with the provider.
            state: Signed state value.

        Returns:
            Absolute authorization URL.
        """
        params = {
            "client_id": self.client_id,
            "redirect_uri": redirect_uri,
            "scope": " ".join(self.config.scopes),
            "state": state,
            **dict(self.config.extra_authorize_params),
        }
        return f"{self.config.authorization_url}?{urlencode(params)}"

    async def exchange(self, code: str, redirect_uri: str) -> str:
        """Exchange an authorization code for an access token.

        Args:
            code: Authorization code from the callback.
            redirect_uri: Callback URL used at initiation.

        Returns:
            Provider access token.

        Raises:
            UpstreamError: If the exchange fails or returns no token.
        """
        data = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": redirect_uri,
            "client_id": self.client_id,
            "client_secret": self._client_secret,
        }
        body = await self._request(
            "POST",
            self.config.token_url,
            data=data,
            headers={"Accept": "application/json"},
        )
        access_token = body.get("access_token") if isinstance(body, dict) else None
        if not access_token:
            logger.warning(
                "OAuth token exchange returned no access token",
                extra={"provider": self.provider},
            )
            raise UpstreamError("OAuth token exchange failed")
        return str(access_token)

    async def _request(self, method: str, url: str, **kwargs: Any) -> Any:
        try:
            async with self._client() as client:
                resp = await client.request(method, url, **kwargs)
                resp.raise_for_status()
                return resp.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(
                "OAuth provider request failed",
                extra={"provider": self.provider, "url": url, "error": type(e).__name__},
            )
            raise UpstreamError(f"{self.provider} request failed") from e

    async def _get_json(self, url: str, access_token: str, accept: str) -> Any:
        return await self._request(
            "GET",
            url,
            headers={"Authorization": f"Bearer {access_token}", "Accept": accept},
        )


class GitHubOAuthClient(_HTTPOAuthClient):
    """GitHub OAuth app client.

    GitHub omits the email from /user when the user keeps it private, in
    which case the address list is consulted: the primary verified address
    wins, else the first verified one.
    """

    provider = "github"

    @classmethod
    def from_settings(cls) -> "GitHubOAuthClient":
        return cls(
            settings.github_client_id,
            settings.github_client_secret.get_secret_value(),
        )

    async def fetch_profile(self, access_token: str) -> OAuthProfile:
        """Fetch the GitHub user and a verified email address.

        Raises:
            UpstreamError: If GitHub fails or no verified email exists.
        """
        user = await self._get_json(self.config.userinfo_url, access_token, _GITHUB_ACCEPT)
        if not isinstance(user, dict) or user.get("id") is None:
            raise UpstreamError("github returned an invalid profile")

        # GitHub only exposes a public profile email once it is verified
        email = user.get("email") or await self._primary_email(access_token)
        return OAuthProfile(
            provider_user_id=str(user["id"]),
            email=email,
            email_verified=True,
            name=user.get("name") or user.get("login"),
            avatar_url=user.get("avatar_url"),
        )

    async def _primary_email(self, access_token: str) -> str:
        emails = await self._get_json(_GITHUB_EMAILS_URL, access_token, _GITHUB_ACCEPT)
        if not isinstance(emails, list):
            raise UpstreamError("github returned an invalid email list")

        verified = [e for e in emails if isinstance(e, dict) and e.get("verified")]
        for entry in verified:
            if entry.get("primary") and entry.get("email"):
                return str(entry["email"])
        for entry in verified:
            if entry.get("email"):
                return str(entry["email"])
        raise UpstreamError("No verified email on the github account")


class GoogleOAuthClient(_HTTPOAuthClient):
    """Google OAuth client using the OpenID Connect userinfo endpoint."""

    provider = "google"

    @classmethod
    def from_settings(cls) -> "GoogleOAuthClient":
        return cls(
            settings.google_client_id,
            settings.google_client_secret.get_secret_value(),
        )

    async def fetch_profile(self, access_token: str) -> OAuthProfile:
        """Fetch the Google profile; the email must be verified.

        Raises:
            UpstreamError: If Google fails or the email is unverified.
        """
        info = await self._get_json(self.config.userinfo_url, access_token, "application/json")
        if not isinstance(info, dict) or not info.get("sub") or not info.get("email"):
            raise UpstreamError("google returned an invalid profile")
        if info.get("email_verified") is not True:
            raise UpstreamError("google email address is not verified")
        return OAuthProfile(
            provider_user_id=str(info["sub"]),
            email=str(info["email"]),
            email_verified=True,
            name=info.get("name"),
            avatar_url=info.get("picture"),
        )
