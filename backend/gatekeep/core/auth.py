"""Authentication helpers for token generation and cookie management.

Cookies are described as plain CookieSpec values so that the identity
service never depends on a web framework; the HTTP layer applies them to a
response with apply_cookie().
"""

import secrets
from dataclasses import dataclass

from fastapi import Response

from gatekeep.core.config import settings

# 32 random bytes, base64url without padding
_TOKEN_BYTES = 32


def generate_token() -> str:
    """Generate an opaque, URL-safe, high-entropy token.

    Used for session tokens and verification tokens.

    Returns:
        43-character base64url string.
    """
    return secrets.token_urlsafe(_TOKEN_BYTES)


@dataclass(frozen=True)
class CookieSpec:
    """A cookie to set on the outgoing response.

    A negative max_age tells the browser to drop the cookie immediately.

    Attributes:
        name: Cookie name.
        value: Cookie value.
        max_age: Lifetime in seconds.
        path: Cookie path.
        domain: Cookie domain, or None for host-only.
        secure: Send only over HTTPS.
        httponly: Hide from JavaScript.
        samesite: SameSite policy.
    """

    name: str
    value: str
    max_age: int
    path: str = "/"
    domain: str | None = None
    secure: bool = True
    httponly: bool = True
    samesite: str = "lax"

    @property
    def expired(self) -> bool:
        """Whether this spec deletes the cookie."""
        return self.max_age < 0


def build_session_cookie(token: str) -> CookieSpec:
    """Session cookie carrying the token, living as long as the session.

    Args:
        token: Session token.

    Returns:
        CookieSpec for the session cookie.
    """
    return CookieSpec(
        name=settings.session_cookie_name,
        value=token,
        max_age=settings.session_ttl_seconds,
        path=settings.session_cookie_path,
        domain=settings.session_cookie_domain or None,
        secure=settings.session_cookie_secure,
    )


def clear_session_cookie() -> CookieSpec:
    """Immediately-expiring session cookie, used on logout."""
    return CookieSpec(
        name=settings.session_cookie_name,
        value="",
        max_age=-1,
        path=settings.session_cookie_path,
        domain=settings.session_cookie_domain or None,
        secure=settings.session_cookie_secure,
    )


def apply_cookie(response: Response, spec: CookieSpec) -> None:
    """Write a CookieSpec onto a FastAPI response.

    Args:
        response: FastAPI response object.
        spec: Cookie to set (or expire).
    """
    if spec.expired:
        response.delete_cookie(
            key=spec.name,
            path=spec.path,
            domain=spec.domain,
            secure=spec.secure,
            httponly=spec.httponly,
            samesite=spec.samesite,
        )
        return
    response.set_cookie(
        key=spec.name,
        value=spec.value,
        max_age=spec.max_age,
        path=spec.path,
        domain=spec.domain,
        secure=spec.secure,
        httponly=spec.httponly,
        samesite=spec.samesite,
    )
