"""Tests for the SQL-backed stores against a throwaway SQLite database.

The schema comes from Base.metadata, so these run without PostgreSQL.
"""

from collections.abc import AsyncGenerator
from pathlib import Path

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from gatekeep.core.encryption import TokenCipher
from gatekeep.core.oauth import OAuthStateCodec
from gatekeep.core.password import PasswordHasher
from gatekeep.models.base import Base
from gatekeep.models.provider_link import ProviderLink
from gatekeep.models.user import User
from gatekeep.repositories.kv_store import SqlKeyValueStore
from gatekeep.repositories.provider_link_repository import ProviderLinkRepository
from gatekeep.repositories.record_store import DuplicateRecordError, SqlRecordStore
from gatekeep.repositories.session_registry import SessionRegistry
from gatekeep.repositories.user_repository import UserRepository
from gatekeep.repositories.verification_token_registry import VerificationTokenRegistry
from gatekeep.services.identity_service import IdentityService
from tests.conftest import (
    TEST_PASSWORD,
    TEST_SESSION_TTL,
    FakeClock,
    FakeEmailSender,
    FakeOAuthClient,
)


class _UnixClock:
    def __init__(self) -> None:
        self.now = 1_700_000_000.0

    def __call__(self) -> float:
        return self.now


@pytest_asyncio.fixture
async def session_factory(tmp_path: Path) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'gatekeep.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def unix_clock() -> _UnixClock:
    return _UnixClock()


@pytest.fixture
def sql_kv(session_factory, unix_clock: _UnixClock) -> SqlKeyValueStore:
    return SqlKeyValueStore(session_factory, clock=unix_clock)


@pytest.fixture
def sql_users(session_factory) -> UserRepository:
    return UserRepository(SqlRecordStore(User, session_factory))


@pytest.fixture
def sql_links(session_factory, cipher: TokenCipher) -> ProviderLinkRepository:
    return ProviderLinkRepository(SqlRecordStore(ProviderLink, session_factory), cipher)


# =============================================================================
# SqlKeyValueStore
# =============================================================================


class TestSqlKeyValueStore:
    async def test_set_overwrites_and_delete(self, sql_kv: SqlKeyValueStore):
        await sql_kv.set("k", "one")
        await sql_kv.set("k", "two")
        assert await sql_kv.get("k") == "two"

        await sql_kv.delete("k")
        await sql_kv.delete("k")
        assert await sql_kv.get("k") is None

    async def test_expired_rows_invisible_until_purged(
        self, sql_kv: SqlKeyValueStore, unix_clock: _UnixClock
    ):
        await sql_kv.set("short", "v", 10)
        await sql_kv.set("forever", "v", 0)
        unix_clock.now += 10

        assert await sql_kv.get("short") is None
        assert await sql_kv.list_keys("") == ["forever"]
        assert await sql_kv.purge_expired() == 1

    async def test_list_keys_treats_prefix_literally(self, sql_kv: SqlKeyValueStore):
        """LIKE wildcards in the prefix must not match other keys."""
        await sql_kv.set("user_sessions:u1:a", "v")
        await sql_kv.set("userXsessions:u1:b", "v")
        await sql_kv.set("user_sessions:u10:c", "v")

        assert await sql_kv.list_keys("user_sessions:u1:") == ["user_sessions:u1:a"]

    async def test_list_keys_limit(self, sql_kv: SqlKeyValueStore):
        for i in range(4):
            await sql_kv.set(f"p:{i}", "v")
        assert await sql_kv.list_keys("p:", limit=2) == ["p:0", "p:1"]


# =============================================================================
# SqlRecordStore
# =============================================================================


class TestSqlRecordStore:
    async def test_create_and_lookup(self, sql_users: UserRepository):
        created = await sql_users.create(email="Sql@Example.com", name="Sql")

        by_email = await sql_users.get_by_email("sql@example.com")
        assert by_email is not None
        assert by_email.id == created.id
        assert by_email.has_password is False

    async def test_duplicate_email(self, sql_users: UserRepository):
        await sql_users.create(email="dup@example.com")
        with pytest.raises(DuplicateRecordError):
            await sql_users.create(email="dup@example.com")

    async def test_save_updates_row(self, sql_users: UserRepository):
        user = await sql_users.create(email="a@example.com")
        user.email_verified = True
        await sql_users.save(user)

        fetched = await sql_users.get_by_id(user.id)
        assert fetched is not None
        assert fetched.email_verified is True

    async def test_paging_and_delete(self, sql_users: UserRepository):
        ids = [(await sql_users.create(email=f"u{i}@example.com")).id for i in range(3)]

        assert len(await sql_users.list_paged(limit=2)) == 2
        assert await sql_users.count() == 3

        await sql_users.delete(ids[0])
        await sql_users.delete("missing")
        assert await sql_users.count() == 2

    async def test_provider_identity_is_unique_across_users(
        self, sql_users: UserRepository, sql_links: ProviderLinkRepository
    ):
        alice = await sql_users.create(email="alice@example.com")
        bob = await sql_users.create(email="bob@example.com")
        await sql_links.upsert(
            user_id=alice.id,
            provider_type="github",
            provider_user_id="42",
            access_token="t1",
        )

        with pytest.raises(DuplicateRecordError):
            await sql_links.upsert(
                user_id=bob.id,
                provider_type="github",
                provider_user_id="42",
                access_token="t2",
            )

    async def test_link_refresh_keeps_row(
        self, sql_users: UserRepository, sql_links: ProviderLinkRepository
    ):
        alice = await sql_users.create(email="alice@example.com")
        first = await sql_links.upsert(
            user_id=alice.id,
            provider_type="github",
            provider_user_id="42",
            access_token="t1",
        )
        await sql_links.upsert(
            user_id=alice.id,
            provider_type="github",
            provider_user_id="42",
            access_token="t2",
            existing=first,
        )

        links = await sql_links.list_for_user(alice.id)
        assert [link.id for link in links] == [first.id]
        assert sql_links.access_token(links[0]) == "t2"


# =============================================================================
# IdentityService over SQL stores
# =============================================================================


async def test_register_verify_login_over_sql(
    sql_users: UserRepository,
    sql_links: ProviderLinkRepository,
    sql_kv: SqlKeyValueStore,
    hasher: PasswordHasher,
    state_codec: OAuthStateCodec,
    email_sender: FakeEmailSender,
    clock: FakeClock,
):
    service = IdentityService(
        users=sql_users,
        links=sql_links,
        sessions=SessionRegistry(sql_kv),
        tokens=VerificationTokenRegistry(sql_kv),
        hasher=hasher,
        state_codec=state_codec,
        oauth_clients={"github": FakeOAuthClient("github")},
        email=email_sender,
        session_ttl_seconds=TEST_SESSION_TTL,
        clock=clock,
    )

    user = await service.register("sql@example.com", TEST_PASSWORD)
    await service.verify_email(email_sender.last_token())
    session = await service.login("sql@example.com", TEST_PASSWORD)

    _resolved, resolved_user = await service.resolve_session(session.token)
    assert resolved_user.id == user.id
    assert resolved_user.email_verified is True

    outcome = await service.cascade_delete_user(user.id)
    assert outcome.sessions_revoked == 2
    assert await sql_users.get_by_id(user.id) is None
