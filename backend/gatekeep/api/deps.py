"""Shared dependencies for API endpoints.

The IdentityService is a process-wide singleton wired to the SQL stores and
the configured OAuth and email clients. Tests replace it through
app.dependency_overrides[get_identity_service].
"""

import hmac
from typing import Annotated

from fastapi import Depends, Header, Request

from gatekeep.core.config import settings
from gatekeep.core.database import async_session_factory
from gatekeep.core.email import EmailClient
from gatekeep.core.encryption import TokenCipher
from gatekeep.core.errors import ForbiddenError
from gatekeep.core.oauth import OAuthStateCodec
from gatekeep.core.oauth_client import GitHubOAuthClient, GoogleOAuthClient, OAuthClient
from gatekeep.core.password import PasswordHasher
from gatekeep.models.provider_link import ProviderLink
from gatekeep.models.user import User
from gatekeep.repositories.kv_store import SqlKeyValueStore
from gatekeep.repositories.provider_link_repository import ProviderLinkRepository
from gatekeep.repositories.record_store import SqlRecordStore
from gatekeep.repositories.session_registry import SessionRegistry
from gatekeep.repositories.user_repository import UserRepository
from gatekeep.repositories.verification_token_registry import (
    TokenLifetimes,
    VerificationTokenRegistry,
)
from gatekeep.services.identity_service import IdentityService

_identity_service: IdentityService | None = None


def _configured_oauth_clients() -> dict[str, OAuthClient]:
    """OAuth clients for every provider that has a client id configured."""
    clients: dict[str, OAuthClient] = {}
    if settings.github_client_id:
        clients["github"] = GitHubOAuthClient.from_settings()
    if settings.google_client_id:
        clients["google"] = GoogleOAuthClient.from_settings()
    return clients


def build_identity_service() -> IdentityService:
    """Wire an IdentityService to the database and external clients."""
    kv = SqlKeyValueStore(async_session_factory)
    return IdentityService(
        users=UserRepository(SqlRecordStore(User, async_session_factory)),
        links=ProviderLinkRepository(
            SqlRecordStore(ProviderLink, async_session_factory),
            TokenCipher.from_settings(),
        ),
        sessions=SessionRegistry(kv),
        tokens=VerificationTokenRegistry(kv, TokenLifetimes.from_settings()),
        hasher=PasswordHasher(),
        state_codec=OAuthStateCodec.from_settings(),
        oauth_clients=_configured_oauth_clients(),
        email=EmailClient.from_settings(),
        session_ttl_seconds=settings.session_ttl_seconds,
    )


def get_identity_service() -> IdentityService:
    """Get or create the IdentityService singleton."""
    global _identity_service

    if _identity_service is None:
        _identity_service = build_identity_service()
    return _identity_service


IdentityServiceDep = Annotated[IdentityService, Depends(get_identity_service)]


async def get_current_user(
    request: Request,
    service: IdentityServiceDep,
) -> User:
    """Resolve the session cookie to its user.

    Raises:
        UnauthorizedError: For any missing, unknown, or expired session.
    """
    token = request.cookies.get(settings.session_cookie_name)
    _session, user = await service.resolve_session(token)
    return user


def require_admin(
    x_admin_key: Annotated[str | None, Header()] = None,
) -> None:
    """Check the X-Admin-Key header against the configured admin key.

    Admin routes are closed entirely while no key is configured.

    Raises:
        ForbiddenError: If the key is missing or wrong.
    """
    expected = settings.admin_api_key.get_secret_value()
    if not expected or not x_admin_key:
        raise ForbiddenError()
    if not hmac.compare_digest(x_admin_key.encode(), expected.encode()):
        raise ForbiddenError()


CurrentUser = Annotated[User, Depends(get_current_user)]
AdminKey = Annotated[None, Depends(require_admin)]
