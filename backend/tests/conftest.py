"""Shared fixtures: in-memory stores, fake collaborators, and a wired service.

Everything here runs without a database or network. Argon2 is configured
with minimal cost so hashing stays fast.
"""

import re
from collections.abc import AsyncGenerator
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

import pytest
import pytest_asyncio
from cryptography.fernet import Fernet
from httpx import ASGITransport, AsyncClient

from gatekeep.core.email import EmailReceipt
from gatekeep.core.encryption import TokenCipher
from gatekeep.core.errors import UpstreamError
from gatekeep.core.oauth import OAuthStateCodec
from gatekeep.core.oauth_client import OAuthProfile
from gatekeep.core.password import Argon2Parameters, PasswordHasher
from gatekeep.models.provider_link import ProviderLink
from gatekeep.models.user import User
from gatekeep.repositories.kv_store import InMemoryKeyValueStore
from gatekeep.repositories.provider_link_repository import ProviderLinkRepository
from gatekeep.repositories.record_store import InMemoryRecordStore
from gatekeep.repositories.session_registry import SessionRegistry
from gatekeep.repositories.user_repository import UserRepository
from gatekeep.repositories.verification_token_registry import VerificationTokenRegistry
from gatekeep.services.identity_service import IdentityService

# Security: test-only secret
TEST_STATE_SECRET = "test-state-secret-that-is-at-least-32-characters"  # nosec B105  # gitleaks:allow

TEST_PASSWORD = "correct horse battery staple"  # nosec B105
TEST_SESSION_TTL = 3600

# Cheapest parameters argon2 accepts for 1 lane
FAST_ARGON2 = Argon2Parameters(memory_kib=8, iterations=1, parallelism=1)

_TOKEN_IN_LINK = re.compile(r"token=([A-Za-z0-9_\-]+)")


def token_from_email(text: str) -> str:
    """Pull the verification token out of an email body."""
    match = _TOKEN_IN_LINK.search(text)
    assert match is not None, f"no token in email: {text!r}"
    return match.group(1)


class FakeClock:
    """Settable UTC clock for the identity service."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 1, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@dataclass
class SentEmail:
    to: str
    subject: str
    text: str


@dataclass
class FakeEmailSender:
    """Records sends; can be told to reject or raise."""

    sent: list[SentEmail] = field(default_factory=list)
    status_code: int = 200
    error: Exception | None = None

    async def send(self, to: str, subject: str, text: str) -> EmailReceipt:
        if self.error is not None:
            raise self.error
        self.sent.append(SentEmail(to=to, subject=subject, text=text))
        return EmailReceipt(status_code=self.status_code, message_id="msg_1")

    def last_token(self) -> str:
        assert self.sent, "no email was sent"
        return token_from_email(self.sent[-1].text)


class FakeOAuthClient:
    """OAuth client returning a configurable profile without HTTP."""

    def __init__(self, provider: str, profile: OAuthProfile | None = None) -> None:
        self.provider = provider
        self.profile = profile or OAuthProfile(
            provider_user_id=f"{provider}-user-1",
            email=f"{provider}@example.com",
            email_verified=True,
            name="Octo Cat",
        )
        self.fail_exchange = False
        self.exchanged_codes: list[str] = []

    def authorize_url(self, redirect_uri: str, state: str) -> str:
        return f"https://{self.provider}.example/authorize?state={state}&redirect_uri={redirect_uri}"

    async def exchange(self, code: str, redirect_uri: str) -> str:  # noqa: ARG002
        if self.fail_exchange:
            raise UpstreamError(f"{self.provider} request failed")
        self.exchanged_codes.append(code)
        return f"access-{code}"

    async def fetch_profile(self, access_token: str) -> OAuthProfile:  # noqa: ARG002
        return self.profile


# =============================================================================
# Stores and collaborators
# =============================================================================


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def kv_store() -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore()


@pytest.fixture
def cipher() -> TokenCipher:
    return TokenCipher(Fernet.generate_key())


@pytest.fixture
def hasher() -> PasswordHasher:
    return PasswordHasher(FAST_ARGON2)


@pytest.fixture
def state_codec() -> OAuthStateCodec:
    return OAuthStateCodec(TEST_STATE_SECRET, cookie_secure=False)


@pytest.fixture
def email_sender() -> FakeEmailSender:
    return FakeEmailSender()


@pytest.fixture
def github() -> FakeOAuthClient:
    return FakeOAuthClient("github")


@pytest.fixture
def google() -> FakeOAuthClient:
    return FakeOAuthClient("google")


@pytest.fixture
def users() -> UserRepository:
    return UserRepository(InMemoryRecordStore(User, unique=[("email",)]))


@pytest.fixture
def links(cipher: TokenCipher) -> ProviderLinkRepository:
    store = InMemoryRecordStore(
        ProviderLink,
        unique=[("provider_type", "provider_user_id")],
    )
    return ProviderLinkRepository(store, cipher)


@pytest.fixture
def sessions(kv_store: InMemoryKeyValueStore) -> SessionRegistry:
    return SessionRegistry(kv_store)


@pytest.fixture
def tokens(kv_store: InMemoryKeyValueStore) -> VerificationTokenRegistry:
    return VerificationTokenRegistry(kv_store)


@pytest.fixture
def service(
    users: UserRepository,
    links: ProviderLinkRepository,
    sessions: SessionRegistry,
    tokens: VerificationTokenRegistry,
    hasher: PasswordHasher,
    state_codec: OAuthStateCodec,
    github: FakeOAuthClient,
    google: FakeOAuthClient,
    email_sender: FakeEmailSender,
    clock: FakeClock,
) -> IdentityService:
    """IdentityService wired to in-memory stores and fakes."""
    return IdentityService(
        users=users,
        links=links,
        sessions=sessions,
        tokens=tokens,
        hasher=hasher,
        state_codec=state_codec,
        oauth_clients={"github": github, "google": google},
        email=email_sender,
        session_ttl_seconds=TEST_SESSION_TTL,
        clock=clock,
    )


# =============================================================================
# Account helpers
# =============================================================================


async def register_verified(
    service: IdentityService,
    email_sender: FakeEmailSender,
    email: str = "alice@example.com",
    password: str = TEST_PASSWORD,
) -> User:
    """Register a user and redeem the verification email."""
    user = await service.register(email, password, "Alice")
    await service.verify_email(email_sender.last_token())
    return await service.get_user(user.id)


@pytest_asyncio.fixture
async def verified_user(
    service: IdentityService,
    email_sender: FakeEmailSender,
) -> User:
    return await register_verified(service, email_sender)


# =============================================================================
# HTTP client
# =============================================================================


@pytest_asyncio.fixture
async def client(service: IdentityService) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client for the app with the identity service overridden.

    Uses an https base URL so Secure session cookies are sent back.
    """
    from gatekeep.api.deps import get_identity_service
    from gatekeep.main import app

    app.dependency_overrides[get_identity_service] = lambda: service
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="https://test",
    ) as ac:
        yield ac
    app.dependency_overrides.clear()
