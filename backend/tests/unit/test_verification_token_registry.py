"""Tests for VerificationTokenRegistry and token lifetimes."""

from datetime import UTC, datetime, timedelta

import pytest

from gatekeep.models.verification_token import TokenPurpose
from gatekeep.repositories.kv_store import InMemoryKeyValueStore
from gatekeep.repositories.verification_token_registry import (
    TokenLifetimes,
    VerificationTokenRegistry,
    verification_key,
)

_NOW = datetime(2026, 1, 1, tzinfo=UTC)


class TestTokenLifetimes:
    """Default lifetimes per purpose."""

    @pytest.mark.parametrize(
        ("purpose", "seconds"),
        [
            (TokenPurpose.EMAIL_VERIFY, 24 * 3600),
            (TokenPurpose.MAGIC_LINK, 15 * 60),
            (TokenPurpose.PASSWORD_RESET, 3600),
        ],
    )
    def test_defaults(self, purpose: TokenPurpose, seconds: int):
        assert TokenLifetimes().for_purpose(purpose) == seconds


class TestIssue:
    """Tests for issue()."""

    async def test_issue_stores_typed_token(
        self, tokens: VerificationTokenRegistry, kv_store: InMemoryKeyValueStore
    ):
        record = await tokens.issue("user-1", TokenPurpose.MAGIC_LINK, _NOW)

        assert record.user_id == "user-1"
        assert record.purpose is TokenPurpose.MAGIC_LINK
        assert record.expires_at == _NOW + timedelta(minutes=15)
        assert len(record.token) == 43
        assert await kv_store.get(verification_key(record.token)) is not None

    async def test_tokens_are_unique(self, tokens: VerificationTokenRegistry):
        first = await tokens.issue("user-1", TokenPurpose.EMAIL_VERIFY, _NOW)
        second = await tokens.issue("user-1", TokenPurpose.EMAIL_VERIFY, _NOW)
        assert first.token != second.token

    async def test_get_round_trips(self, tokens: VerificationTokenRegistry):
        record = await tokens.issue("user-1", TokenPurpose.PASSWORD_RESET, _NOW)
        assert await tokens.get(record.token) == record

    async def test_delete_removes_token(self, tokens: VerificationTokenRegistry):
        record = await tokens.issue("user-1", TokenPurpose.PASSWORD_RESET, _NOW)
        await tokens.delete(record.token)
        assert await tokens.get(record.token) is None

    async def test_store_ttl_matches_purpose(self):
        """The store drops the token once its purpose's lifetime elapses."""
        now = [0.0]
        registry = VerificationTokenRegistry(
            InMemoryKeyValueStore(clock=lambda: now[0]),
            TokenLifetimes(magic_link=60),
        )
        record = await registry.issue("user-1", TokenPurpose.MAGIC_LINK, _NOW)

        now[0] = 59
        assert await registry.get(record.token) is not None
        now[0] = 60
        assert await registry.get(record.token) is None

    def test_is_expired_is_strict(self):
        from gatekeep.models.verification_token import VerificationToken

        record = VerificationToken(
            token="t",
            user_id="u",
            purpose=TokenPurpose.EMAIL_VERIFY,
            created_at=_NOW,
            expires_at=_NOW + timedelta(seconds=10),
        )
        assert record.is_expired(_NOW + timedelta(seconds=10)) is False
        assert record.is_expired(_NOW + timedelta(seconds=11)) is True
