"""Redirect helpers shared by the OAuth login and link callbacks.

Callbacks are hit by the browser on its way back from the provider, so they
never answer with a JSON error. Every outcome is a 302 to the frontend, and
every response clears the state cookie.
"""

import logging
from collections.abc import Awaitable
from typing import TypeVar
from urllib.parse import urlencode

from fastapi.responses import RedirectResponse

from gatekeep.core.auth import CookieSpec, apply_cookie
from gatekeep.core.config import settings
from gatekeep.core.errors import APIError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Error codes the frontend understands, keyed by APIError.code
_CALLBACK_ERRORS = {
    "INVALID_STATE": "invalid_state",
    "UPSTREAM_FAILURE": "oauth_failed",
    "VALIDATION_ERROR": "oauth_failed",
    "ACCOUNT_NOT_LINKED": "account_not_linked",
    "PROVIDER_ALREADY_LINKED": "provider_already_linked",
    "UNAUTHORIZED": "unauthorized",
}


def login_callback_url(provider: str) -> str:
    return f"{settings.backend_url}/api/v1/auth/login/{provider}/callback"


def link_callback_url(provider: str) -> str:
    return f"{settings.backend_url}/api/v1/providers/{provider}/callback"


def frontend_redirect(path: str, cookies: list[CookieSpec], **params: str) -> RedirectResponse:
    """302 to a frontend path with query params and cookies applied."""
    url = f"{settings.frontend_url}{path}"
    if params:
        url = f"{url}?{urlencode(params)}"
    response = RedirectResponse(url=url, status_code=302)
    for spec in cookies:
        apply_cookie(response, spec)
    return response


async def run_callback(
    operation: Awaitable[T],
    *,
    provider: str,
    fallback_error: str,
) -> tuple[T | None, str | None]:
    """Await a callback operation and translate failures to an error code.

    Args:
        operation: The service call to await.
        provider: Provider name, for logs.
        fallback_error: Code used for failures with no specific mapping.

    Returns:
        Tuple of (result, None) on success or (None, error_code) on failure.
    """
    try:
        return await operation, None
    except APIError as exc:
        logger.info(
            "OAuth callback rejected",
            extra={"provider": provider, "code": exc.code},
        )
        return None, _CALLBACK_ERRORS.get(exc.code, fallback_error)
    except Exception:
        logger.exception("OAuth callback failed", extra={"provider": provider})
        return None, fallback_error
