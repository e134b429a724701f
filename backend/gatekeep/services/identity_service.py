"""Identity service: registration, sign-in, verification, and provider linking.

Account state is implicit in the User record (email_verified, presence of a
password hash, set of provider links) and in which sessions exist. Every
flow below moves an account between those states:

- register: unverified user with a password, verification email sent
- verify_email: user becomes verified and is signed in
- login / magic link / OAuth login: a new session
- password reset: the credential is replaced (sessions are left alone)
- OAuth link / unlink: provider links added or removed, never leaving the
  account without a way to sign in
- cascade delete (admin): sessions, then links, then the user

Authentication failures are coarse: callers see InvalidCredentials,
InvalidToken, or InvalidState without learning which check failed. The
magic-link and password-reset requests report success whether or not the
email exists. Email delivery is best-effort and never fails a flow.
"""

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Protocol

from gatekeep.core.auth import CookieSpec, generate_token
from gatekeep.core.email import (
    EmailReceipt,
    magic_link_email,
    password_reset_email,
    verification_email,
)
from gatekeep.core.errors import (
    AccountNotLinkedError,
    EmailExistsError,
    EmailNotVerifiedError,
    InternalError,
    InvalidCredentialsError,
    InvalidTokenError,
    LastAuthMethodError,
    NotFoundError,
    ProviderAlreadyLinkedError,
    ProviderNotFoundError,
    UnauthorizedError,
    UpstreamError,
    ValidationError,
)
from gatekeep.core.oauth import OAuthStateCodec
from gatekeep.core.oauth_client import OAuthClient, OAuthProfile
from gatekeep.core.password import MalformedCredentialError, PasswordHasher
from gatekeep.models.base import utcnow
from gatekeep.models.provider_link import ProviderLink
from gatekeep.models.session import Session
from gatekeep.models.user import User
from gatekeep.models.verification_token import TokenPurpose, VerificationToken
from gatekeep.repositories.provider_link_repository import ProviderLinkRepository
from gatekeep.repositories.record_store import DuplicateRecordError
from gatekeep.repositories.session_registry import SessionRegistry
from gatekeep.repositories.user_repository import UserRepository
from gatekeep.repositories.verification_token_registry import VerificationTokenRegistry

logger = logging.getLogger(__name__)


class EmailSender(Protocol):
    async def send(self, to: str, subject: str, text: str) -> EmailReceipt: ...


@dataclass(frozen=True)
class CascadeDeletion:
    """Outcome of an admin account deletion.

    Attributes:
        user_id: Deleted user.
        sessions_revoked: Sessions removed.
        sessions_failed: Sessions whose revocation raised (still live).
        links_deleted: Provider links removed.
    """

    user_id: str
    sessions_revoked: int
    sessions_failed: int
    links_deleted: int


class IdentityService:
    """Orchestrates every authentication and account-linking flow.

    Args:
        users: User repository.
        links: Provider link repository.
        sessions: Session registry.
        tokens: Verification token registry.
        hasher: Password hasher.
        state_codec: OAuth state codec.
        oauth_clients: OAuth client per provider name.
        email: Notification sender (best-effort).
        session_ttl_seconds: Lifetime of minted sessions.
        clock: Returns the current UTC time.
    """

    def __init__(
        self,
        *,
        users: UserRepository,
        links: ProviderLinkRepository,
        sessions: SessionRegistry,
        tokens: VerificationTokenRegistry,
        hasher: PasswordHasher,
        state_codec: OAuthStateCodec,
        oauth_clients: Mapping[str, OAuthClient],
        email: EmailSender,
        session_ttl_seconds: int,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.users = users
        self.links = links
        self.sessions = sessions
        self.tokens = tokens
        self.hasher = hasher
        self.state_codec = state_codec
        self.oauth_clients = dict(oauth_clients)
        self.email = email
        self.session_ttl_seconds = session_ttl_seconds
        self._clock = clock

    # ===================================================================
    # Internal helpers
    # ===================================================================

    async def _mint_session(self, user_id: str) -> Session:
        now = self._clock()
        session = Session(
            token=generate_token(),
            user_id=user_id,
            created_at=now,
            expires_at=now + timedelta(seconds=self.session_ttl_seconds),
        )
        await self.sessions.create(session, self.session_ttl_seconds)
        return session

    async def _consume_token(self, token: str, purpose: TokenPurpose) -> VerificationToken:
        """Redeem a single-use token: fetch, check, then delete.

        Not atomic. Two concurrent redemptions of the same token can both
        pass the check before either delete lands.

        Raises:
            InvalidTokenError: If the token is absent, expired, or was
                issued for a different flow.
        """
        if not token:
            raise InvalidTokenError()
        record = await self.tokens.get(token)
        if record is None or record.purpose != purpose:
            raise InvalidTokenError()
        if record.is_expired(self._clock()):
            raise InvalidTokenError()
        await self.tokens.delete(token)
        return record

    async def _notify(self, to: str, message: tuple[str, str], kind: str) -> None:
        """Send an email without letting any failure escape."""
        subject, text = message
        try:
            receipt = await self.email.send(to, subject, text)
        except Exception:
            logger.warning(
                "Failed to send email",
                extra={"kind": kind},
                exc_info=True,
            )
            return
        if not receipt.ok:
            logger.warning(
                "Email provider rejected message",
                extra={
                    "kind": kind,
                    "status_code": receipt.status_code,
                    "error": receipt.error,
                },
            )

    def _oauth_client(self, provider: str) -> OAuthClient:
        client = self.oauth_clients.get(provider)
        if client is None:
            raise ValidationError(f"Unsupported OAuth provider: {provider}")
        return client

    async def _oauth_profile(
        self,
        provider: str,
        code: str | None,
        state: str | None,
        cookies: Mapping[str, str],
        redirect_uri: str,
    ) -> tuple[str, OAuthProfile]:
        client = self._oauth_client(provider)
        # State is checked before the code is ever sent to the provider
        self.state_codec.validate_state(state, cookies)
        if not code:
            raise UpstreamError("OAuth authorization was not granted")
        access_token = await client.exchange(code, redirect_uri)
        profile = await client.fetch_profile(access_token)
        if not profile.email_verified:
            raise UpstreamError(f"{provider} did not return a verified email")
        return access_token, profile

    # ===================================================================
    # Password and email-token flows
    # ===================================================================

    async def register(self, email: str, password: str, name: str | None = None) -> User:
        """Create an unverified account and send a verification email.

        Args:
            email: Email address.
            password: Plaintext password.
            name: Optional display name.

        Returns:
            The new user.

        Raises:
            EmailExistsError: If the email is already registered.
        """
        if await self.users.get_by_email(email) is not None:
            raise EmailExistsError()

        password_hash = await self.hasher.hash(password)
        try:
            user = await self.users.create(
                email=email,
                password_hash=password_hash,
                name=name,
            )
        except DuplicateRecordError:
            raise EmailExistsError() from None

        logger.info("User registered", extra={"user_id": user.id})

        token = await self.tokens.issue(user.id, TokenPurpose.EMAIL_VERIFY, self._clock())
        await self._notify(user.email, verification_email(token.token), "email_verify")
        return user

    async def login(self, email: str, password: str) -> Session:
        """Sign in with email and password.

        Raises:
            InvalidCredentialsError: Unknown email, no password, or mismatch.
            EmailNotVerifiedError: Password matched but email is unverified.
        """
        user = await self.users.get_by_email(email)
        if user is None or user.password_hash is None:
            # Same cost as a real check so response time does not reveal
            # whether the account exists
            await self.hasher.verify_dummy(password)
            raise InvalidCredentialsError()

        try:
            matched = await self.hasher.verify(password, user.password_hash)
        except MalformedCredentialError:
            logger.error(
                "Stored credential is malformed",
                extra={"user_id": user.id},
            )
            raise InvalidCredentialsError() from None
        if not matched:
            raise InvalidCredentialsError()

        if not user.email_verified:
            raise EmailNotVerifiedError()

        return await self._mint_session(user.id)

    async def request_magic_link(self, email: str) -> None:
        """Email a sign-in link to a verified account.

        Silent for unknown or unverified addresses.
        """
        try:
            user = await self.users.get_by_email(email)
            if user is None or not user.email_verified:
                return
            token = await self.tokens.issue(user.id, TokenPurpose.MAGIC_LINK, self._clock())
        except Exception:
            logger.warning("Magic link issuance failed", exc_info=True)
            return
        await self._notify(user.email, magic_link_email(token.token), "magic_link")

    async def magic_link_callback(self, token: str) -> Session:
        """Redeem a magic-link token for a session.

        Raises:
            InvalidTokenError: If the token is invalid or its user is gone.
        """
        record = await self._consume_token(token, TokenPurpose.MAGIC_LINK)
        if await self.users.get_by_id(record.user_id) is None:
            raise InvalidTokenError()
        return await self._mint_session(record.user_id)

    async def verify_email(self, token: str) -> Session:
        """Redeem an email-verification token, verify the user, and sign in.

        Raises:
            InvalidTokenError: If the token is invalid or its user is gone.
        """
        record = await self._consume_token(token, TokenPurpose.EMAIL_VERIFY)
        user = await self.users.get_by_id(record.user_id)
        if user is None:
            raise InvalidTokenError()
        if not user.email_verified:
            user.email_verified = True
            await self.users.save(user)
            logger.info("Email verified", extra={"user_id": user.id})
        return await self._mint_session(user.id)

    async def request_password_reset(self, email: str) -> None:
        """Email a password-reset link if the account exists; silent otherwise."""
        try:
            user = await self.users.get_by_email(email)
            if user is None:
                return
            token = await self.tokens.issue(user.id, TokenPurpose.PASSWORD_RESET, self._clock())
        except Exception:
            logger.warning("Password reset issuance failed", exc_info=True)
            return
        await self._notify(user.email, password_reset_email(token.token), "password_reset")

    async def confirm_password_reset(self, token: str, new_password: str) -> None:
        """Redeem a password-reset token and replace the credential.

        Existing sessions stay valid.

        Raises:
            InvalidTokenError: If the token is invalid or its user is gone.
        """
        record = await self._consume_token(token, TokenPurpose.PASSWORD_RESET)
        user = await self.users.get_by_id(record.user_id)
        if user is None:
            raise InvalidTokenError()
        user.password_hash = await self.hasher.hash(new_password)
        await self.users.save(user)
        logger.info("Password reset", extra={"user_id": user.id})

    # ===================================================================
    # Sessions
    # ===================================================================

    async def resolve_session(self, token: str | None) -> tuple[Session, User]:
        """Map a session token to its live session and user.

        Logically expired sessions are deleted on sight.

        Raises:
            UnauthorizedError: If there is no live session for the token.
        """
        if not token:
            raise UnauthorizedError()
        session = await self.sessions.get(token)
        if session is None:
            raise UnauthorizedError()
        if session.is_expired(self._clock()):
            await self.sessions.delete(token)
            raise UnauthorizedError()
        user = await self.users.get_by_id(session.user_id)
        if user is None:
            raise UnauthorizedError()
        return session, user

    async def logout(self, token: str | None) -> None:
        """Delete the session, if any. Never fails for a missing session."""
        if not token:
            return
        try:
            await self.sessions.delete(token)
        except Exception:
            logger.warning("Session delete failed during logout", exc_info=True)

    async def list_user_sessions(self, user_id: str, limit: int = 0) -> list[Session]:
        """Live sessions for a user; entries that vanish mid-scan are skipped."""
        now = self._clock()
        sessions: list[Session] = []
        for token in await self.sessions.list_by_user(user_id, limit):
            session = await self.sessions.get(token)
            # The store may evict later than expires_at
            if session is not None and not session.is_expired(now):
                sessions.append(session)
        return sessions

    async def revoke_session(self, token: str) -> None:
        """Delete one session by token.

        Raises:
            NotFoundError: If no such session exists.
        """
        if await self.sessions.get(token) is None:
            raise NotFoundError("Session")
        await self.sessions.delete(token)

    # ===================================================================
    # Profile
    # ===================================================================

    async def get_user(self, user_id: str) -> User:
        user = await self.users.get_by_id(user_id)
        if user is None:
            raise NotFoundError("User", user_id)
        return user

    async def update_profile(self, user_id: str, name: str | None) -> User:
        user = await self.get_user(user_id)
        user.name = name
        return await self.users.save(user)

    async def list_users(self, limit: int, offset: int = 0) -> tuple[list[User], int]:
        """A page of users plus the total count."""
        return await self.users.list_paged(limit, offset), await self.users.count()

    # ===================================================================
    # OAuth
    # ===================================================================

    def begin_oauth(self, provider: str, redirect_uri: str) -> tuple[str, CookieSpec]:
        """Start an authorization redirect.

        Returns:
            Tuple of (provider authorize URL, state cookie to set).

        Raises:
            ValidationError: If the provider is not configured.
        """
        client = self._oauth_client(provider)
        state, cookie = self.state_codec.generate_state()
        return client.authorize_url(redirect_uri, state), cookie

    def clear_state_cookie(self) -> CookieSpec:
        """Cookie that removes the OAuth state; apply after every callback."""
        return self.state_codec.clear_state_cookie()

    async def oauth_login(
        self,
        provider: str,
        *,
        code: str | None,
        state: str | None,
        cookies: Mapping[str, str],
        redirect_uri: str,
    ) -> Session:
        """Sign in with a linked external identity.

        Accounts are never created implicitly.

        Raises:
            InvalidStateError: If the state check fails.
            UpstreamError: If the provider exchange or profile fetch fails.
            AccountNotLinkedError: If no account holds this identity.
        """
        _access_token, profile = await self._oauth_profile(
            provider, code, state, cookies, redirect_uri
        )
        link = await self.links.get_by_provider_identity(provider, profile.provider_user_id)
        if link is None:
            raise AccountNotLinkedError()
        return await self._mint_session(link.user_id)

    async def oauth_link(
        self,
        user_id: str,
        provider: str,
        *,
        code: str | None,
        state: str | None,
        cookies: Mapping[str, str],
        redirect_uri: str,
    ) -> ProviderLink:
        """Link an external identity to the signed-in user.

        Re-linking the same identity refreshes the stored access token.
        Linking a different account of the same provider replaces the old
        link.

        Raises:
            InvalidStateError: If the state check fails.
            UpstreamError: If the provider exchange or profile fetch fails.
            ProviderAlreadyLinkedError: If another user holds this identity.
        """
        access_token, profile = await self._oauth_profile(
            provider, code, state, cookies, redirect_uri
        )
        held = await self.links.get_by_provider_identity(provider, profile.provider_user_id)
        if held is not None and held.user_id != user_id:
            raise ProviderAlreadyLinkedError(provider)

        existing = held or await self.links.get_for_user(user_id, provider)
        try:
            link = await self.links.upsert(
                user_id=user_id,
                provider_type=provider,
                provider_user_id=profile.provider_user_id,
                access_token=access_token,
                existing=existing,
            )
        except DuplicateRecordError:
            raise ProviderAlreadyLinkedError(provider) from None
        logger.info(
            "Provider linked",
            extra={"user_id": user_id, "provider": provider},
        )
        return link

    async def oauth_unlink(self, user_id: str, provider: str) -> None:
        """Remove a provider link, unless it is the last way to sign in.

        Raises:
            ProviderNotFoundError: If the user has no link for the provider.
            NotFoundError: If the user does not exist.
            LastAuthMethodError: If no password or other link would remain.
        """
        link = await self.links.get_for_user(user_id, provider)
        if link is None:
            raise ProviderNotFoundError(provider)
        user = await self.get_user(user_id)

        others = [
            other
            for other in await self.links.list_for_user(user_id)
            if other.provider_type != provider
        ]
        remaining_methods = (1 if user.has_password else 0) + len(others)
        if remaining_methods == 0:
            raise LastAuthMethodError()

        await self.links.delete(link.id)
        logger.info(
            "Provider unlinked",
            extra={"user_id": user_id, "provider": provider},
        )

    async def list_providers(self, user_id: str) -> list[ProviderLink]:
        return await self.links.list_for_user(user_id)

    # ===================================================================
    # Admin
    # ===================================================================

    async def cascade_delete_user(self, user_id: str) -> CascadeDeletion:
        """Delete a user's sessions, then provider links, then the user.

        Steps run in order without a transaction. If a step raises, the
        cascade stops where it is and an InternalError names the failed
        step; nothing is retried or rolled back.

        Raises:
            NotFoundError: If the user does not exist.
            InternalError: If a step fails partway.
        """
        await self.get_user(user_id)
        completed: list[str] = []

        def _partial(step: str) -> InternalError:
            logger.error(
                "Cascade delete stopped partway",
                extra={"user_id": user_id, "failed_step": step, "completed": completed},
                exc_info=True,
            )
            return InternalError(
                "Account deletion did not complete",
                details=[{"failed_step": step, "completed_steps": list(completed)}],
            )

        try:
            revocation = await self.sessions.delete_by_user(user_id)
        except Exception as e:
            raise _partial("sessions") from e
        if not revocation.complete:
            logger.warning(
                "Some sessions could not be revoked",
                extra={"user_id": user_id, "failed": len(revocation.failed)},
            )
        completed.append("sessions")

        links_deleted = 0
        try:
            for link in await self.links.list_for_user(user_id):
                await self.links.delete(link.id)
                links_deleted += 1
        except Exception as e:
            raise _partial("provider_links") from e
        completed.append("provider_links")

        try:
            await self.users.delete(user_id)
        except Exception as e:
            raise _partial("user") from e

        logger.info(
            "User deleted",
            extra={
                "user_id": user_id,
                "sessions_revoked": len(revocation.revoked),
                "links_deleted": links_deleted,
            },
        )
        return CascadeDeletion(
            user_id=user_id,
            sessions_revoked=len(revocation.revoked),
            sessions_failed=len(revocation.failed),
            links_deleted=links_deleted,
        )
