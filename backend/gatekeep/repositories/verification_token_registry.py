"""Storage for single-use verification tokens.

Tokens live under "verification:<token>" with a store TTL equal to their
purpose's lifetime. The registry only stores and deletes; redeeming is the
caller's job (fetch, check purpose and expiry, then delete). There is no
atomic check-and-delete, so two redemptions racing before either deletes
can both succeed.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta

from gatekeep.core.auth import generate_token
from gatekeep.core.config import settings
from gatekeep.models.base import utcnow
from gatekeep.models.verification_token import TokenPurpose, VerificationToken
from gatekeep.repositories.kv_store import KeyValueStore

_TOKEN_PREFIX = "verification:"


def verification_key(token: str) -> str:
    return f"{_TOKEN_PREFIX}{token}"


@dataclass(frozen=True)
class TokenLifetimes:
    """Lifetime in seconds for each token purpose."""

    email_verify: int = 24 * 60 * 60
    magic_link: int = 15 * 60
    password_reset: int = 60 * 60

    @classmethod
    def from_settings(cls) -> "TokenLifetimes":
        return cls(
            email_verify=settings.email_verify_ttl_seconds,
            magic_link=settings.magic_link_ttl_seconds,
            password_reset=settings.password_reset_ttl_seconds,
        )

    def for_purpose(self, purpose: TokenPurpose) -> int:
        return {
            TokenPurpose.EMAIL_VERIFY: self.email_verify,
            TokenPurpose.MAGIC_LINK: self.magic_link,
            TokenPurpose.PASSWORD_RESET: self.password_reset,
        }[purpose]


class VerificationTokenRegistry:
    """Issue, look up, and delete verification tokens.

    Args:
        store: Key-value store.
        lifetimes: Per-purpose lifetimes.
    """

    def __init__(
        self,
        store: KeyValueStore,
        lifetimes: TokenLifetimes | None = None,
    ) -> None:
        self._store = store
        self.lifetimes = lifetimes or TokenLifetimes()

    async def issue(
        self,
        user_id: str,
        purpose: TokenPurpose,
        now: datetime | None = None,
    ) -> VerificationToken:
        """Generate and store a fresh token for a user.

        Args:
            user_id: Identity the token acts for.
            purpose: Flow that may consume it.
            now: Issue time (defaults to current UTC time).

        Returns:
            The stored token record.
        """
        issued_at = now or utcnow()
        record = VerificationToken(
            token=generate_token(),
            user_id=user_id,
            purpose=purpose,
            created_at=issued_at,
            expires_at=issued_at + timedelta(seconds=self.lifetimes.for_purpose(purpose)),
        )
        await self.create(record)
        return record

    async def create(self, record: VerificationToken) -> None:
        """Store a token with the TTL for its purpose."""
        await self._store.set(
            verification_key(record.token),
            record.model_dump_json(),
            self.lifetimes.for_purpose(record.purpose),
        )

    async def get(self, token: str) -> VerificationToken | None:
        raw = await self._store.get(verification_key(token))
        if raw is None:
            return None
        return VerificationToken.model_validate_json(raw)

    async def delete(self, token: str) -> None:
        await self._store.delete(verification_key(token))
