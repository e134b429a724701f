"""Tests for the in-memory key-value and record stores."""

import pytest

from gatekeep.models.user import User
from gatekeep.repositories.kv_store import InMemoryKeyValueStore
from gatekeep.repositories.record_store import DuplicateRecordError, InMemoryRecordStore
from gatekeep.repositories.user_repository import UserRepository


class _Clock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


# =============================================================================
# InMemoryKeyValueStore
# =============================================================================


class TestInMemoryKeyValueStore:
    """TTL, prefix listing, and purge behaviour."""

    async def test_set_get_delete(self):
        store = InMemoryKeyValueStore()
        await store.set("k", "v")
        assert await store.get("k") == "v"
        await store.delete("k")
        assert await store.get("k") is None

    async def test_delete_missing_is_noop(self):
        await InMemoryKeyValueStore().delete("nope")

    async def test_zero_ttl_never_expires(self):
        clock = _Clock()
        store = InMemoryKeyValueStore(clock=clock)
        await store.set("k", "v", 0)
        clock.now += 10**9
        assert await store.get("k") == "v"

    async def test_entry_invisible_after_ttl(self):
        clock = _Clock()
        store = InMemoryKeyValueStore(clock=clock)
        await store.set("k", "v", 10)
        clock.now += 9.9
        assert await store.get("k") == "v"
        clock.now += 0.1
        assert await store.get("k") is None

    async def test_negative_ttl_rejected(self):
        with pytest.raises(ValueError):
            await InMemoryKeyValueStore().set("k", "v", -1)

    async def test_list_keys_filters_prefix_and_expiry(self):
        clock = _Clock()
        store = InMemoryKeyValueStore(clock=clock)
        await store.set("a:1", "v", 100)
        await store.set("a:2", "v", 5)
        await store.set("b:1", "v", 100)
        clock.now += 10

        assert await store.list_keys("a:") == ["a:1"]

    async def test_list_keys_limit(self):
        store = InMemoryKeyValueStore()
        for i in range(5):
            await store.set(f"p:{i}", "v")
        assert len(await store.list_keys("p:", limit=3)) == 3
        assert len(await store.list_keys("p:")) == 5

    async def test_purge_expired_counts_removed(self):
        clock = _Clock()
        store = InMemoryKeyValueStore(clock=clock)
        await store.set("short", "v", 1)
        await store.set("long", "v", 100)
        clock.now += 2
        assert await store.purge_expired() == 1
        assert await store.get("long") == "v"


# =============================================================================
# InMemoryRecordStore via UserRepository
# =============================================================================


class TestInMemoryRecordStore:
    """Uniqueness, snapshots, and paging."""

    async def test_email_uniqueness_enforced(self, users: UserRepository):
        await users.create(email="a@example.com")
        with pytest.raises(DuplicateRecordError):
            await users.create(email="A@Example.com ")

    async def test_lookup_normalizes_email(self, users: UserRepository):
        created = await users.create(email="Mixed@Example.com")
        found = await users.get_by_email("  mixed@EXAMPLE.com")
        assert found is not None
        assert found.id == created.id
        assert found.email == "mixed@example.com"

    async def test_returned_records_are_copies(self, users: UserRepository):
        """Mutating a fetched record does nothing until save()."""
        created = await users.create(email="a@example.com", name="Before")
        fetched = await users.get_by_id(created.id)
        assert fetched is not None
        fetched.name = "After"

        again = await users.get_by_id(created.id)
        assert again is not None
        assert again.name == "Before"

        await users.save(fetched)
        saved = await users.get_by_id(created.id)
        assert saved is not None
        assert saved.name == "After"

    async def test_save_same_record_keeps_unique_value(self, users: UserRepository):
        """Re-saving a record does not collide with itself."""
        created = await users.create(email="a@example.com")
        created.name = "New"
        await users.save(created)

    async def test_list_paged_and_count(self, users: UserRepository):
        for i in range(5):
            await users.create(email=f"user{i}@example.com")

        page = await users.list_paged(limit=2, offset=2)
        assert len(page) == 2
        assert await users.count() == 5

    async def test_set_requires_id(self):
        store = InMemoryRecordStore(User)
        with pytest.raises(ValueError):
            await store.set(User(id="", email="a@example.com"))

    async def test_delete_missing_is_noop(self, users: UserRepository):
        await users.delete("missing")
