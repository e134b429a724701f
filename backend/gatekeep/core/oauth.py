"""OAuth utilities: signed state tokens and provider configuration.

The state parameter binds an authorization redirect to the browser that
started it. Nothing is stored server-side. The state is a self-verifying
string carried both in the redirect query and in an HttpOnly cookie:

    state = <nonce>|<expiry ms> "." <base64url HMAC-SHA256 of the payload>

A callback is accepted only when the query value equals the cookie value,
the signature recomputes, and the expiry has not passed.
"""

import base64
import hashlib
import hmac
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass

from gatekeep.core.auth import CookieSpec, generate_token
from gatekeep.core.config import settings
from gatekeep.core.errors import InvalidStateError

STATE_COOKIE_NAME = "oauth_state"

# Default TTL for OAuth state cookie (10 minutes)
_DEFAULT_STATE_TTL = 600


class OAuthStateCodec:
    """Generate and validate HMAC-signed OAuth state values.

    Every failure collapses to InvalidStateError so callers learn nothing
    about which check rejected the state.
    """

    def __init__(
        self,
        secret: str,
        *,
        cookie_domain: str | None = None,
        cookie_secure: bool = True,
        ttl_seconds: int = _DEFAULT_STATE_TTL,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if not secret:
            msg = "OAuth state secret must not be empty"
            raise ValueError(msg)
        self._secret = secret.encode("utf-8")
        self._cookie_domain = cookie_domain or None
        self._cookie_secure = cookie_secure
        self._ttl_seconds = ttl_seconds
        self._clock = clock

    @classmethod
    def from_settings(cls) -> "OAuthStateCodec":
        """Build a codec from application settings."""
        return cls(
            settings.state_secret.get_secret_value(),
            cookie_domain=settings.session_cookie_domain,
            cookie_secure=settings.session_cookie_secure,
        )

    def _sign(self, payload: str) -> str:
        mac = hmac.new(self._secret, payload.encode("utf-8"), hashlib.sha256)
        return base64.urlsafe_b64encode(mac.digest()).rstrip(b"=").decode("ascii")

    def _cookie(self, value: str, max_age: int) -> CookieSpec:
        return CookieSpec(
            name=STATE_COOKIE_NAME,
            value=value,
            max_age=max_age,
            path="/",
            domain=self._cookie_domain,
            secure=self._cookie_secure,
        )

    def generate_state(self) -> tuple[str, CookieSpec]:
        """Create a signed state value and the cookie that carries it.

        Returns:
            Tuple of (state string, cookie spec with the same value).
        """
        nonce = generate_token()
        expiry_ms = int((self._clock() + self._ttl_seconds) * 1000)
        payload = f"{nonce}|{expiry_ms}"
        state = f"{payload}.{self._sign(payload)}"
        return state, self._cookie(state, self._ttl_seconds)

    def validate_state(self, state: str | None, cookies: Mapping[str, str]) -> None:
        """Check a callback's state parameter against the request cookies.

        Args:
            state: State query parameter from the provider callback.
            cookies: Request cookies.

        Raises:
            InvalidStateError: On any failed check.
        """
        cookie_value = cookies.get(STATE_COOKIE_NAME)
        if not state or not cookie_value:
            raise InvalidStateError()
        if not hmac.compare_digest(cookie_value.encode(), state.encode()):
            raise InvalidStateError()

        payload, sep, signature = state.rpartition(".")
        if not sep:
            raise InvalidStateError()
        if not hmac.compare_digest(signature.encode(), self._sign(payload).encode()):
            raise InvalidStateError()

        _nonce, sep, expiry = payload.partition("|")
        if not sep:
            raise InvalidStateError()
        try:
            expiry_ms = int(expiry)
        except ValueError:
            raise InvalidStateError() from None
        if self._clock() * 1000 > expiry_ms:
            raise InvalidStateError()

    def clear_state_cookie(self) -> CookieSpec:
        """Immediately-expiring state cookie.

        Apply after every validation attempt, successful or not, so a state
        value can never be replayed.
        """
        return self._cookie("", -1)


# ===================================================================
# OAuth Provider Configuration
# ===================================================================


@dataclass(frozen=True)
class OAuthProviderConfig:
    """Configuration for an OAuth provider.

    Attributes:
        authorization_url: Provider's authorization endpoint.
        token_url: Provider's token exchange endpoint.
        userinfo_url: Provider's userinfo endpoint.
        scopes: OAuth scopes to request.
        extra_authorize_params: Additional authorize URL parameters.
    """

    authorization_url: str
    token_url: str
    userinfo_url: str
    scopes: tuple[str, ...]
    extra_authorize_params: tuple[tuple[str, str], ...] = ()


_PROVIDERS: dict[str, OAuthProviderConfig] = {
    "github": OAuthProviderConfig(  # nosec B106: token_url is an endpoint, not a password
        authorization_url="https://github.com/login/oauth/authorize",
        token_url="https://github.com/login/oauth/access_token",
        userinfo_url="https://api.github.com/user",
        scopes=("read:user", "user:email"),
    ),
    "google": OAuthProviderConfig(  # nosec B106: token_url is an endpoint, not a password
        authorization_url="https://accounts.google.com/o/oauth2/v2/auth",
        token_url="https://oauth2.googleapis.com/token",
        userinfo_url="https://www.googleapis.com/oauth2/v3/userinfo",
        scopes=("openid", "email", "profile"),
        extra_authorize_params=(("response_type", "code"), ("access_type", "offline")),
    ),
}

SUPPORTED_PROVIDERS: tuple[str, ...] = tuple(_PROVIDERS)


def get_provider_config(provider: str) -> OAuthProviderConfig:
    """Get OAuth configuration for a provider.

    Args:
        provider: Provider name (e.g., "github", "google").

    Returns:
        OAuthProviderConfig for the provider.

    Raises:
        ValueError: If provider is not supported.
    """
    config = _PROVIDERS.get(provider)
    if config is None:
        msg = f"Unsupported OAuth provider: {provider}"
        raise ValueError(msg)
    return config
