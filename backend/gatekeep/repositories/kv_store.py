"""TTL-capable key-value store used for sessions and verification tokens.

Contract:
    get(key) -> value | None
    set(key, value, ttl_seconds)   ttl 0 = no expiry
    delete(key)                    missing keys are not an error
    list_keys(prefix, limit)       limit 0 = unbounded, order unspecified

A store must never return an entry after its TTL has elapsed; it may keep
the row around until purge_expired() runs.

Two implementations: InMemoryKeyValueStore for tests and single-process
development, SqlKeyValueStore over the kv_entries table.
"""

import time
from collections.abc import Callable
from typing import Protocol

from sqlalchemy import ColumnElement, delete, or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from gatekeep.models.kv_entry import KeyValueEntry


class KeyValueStore(Protocol):
    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str, ttl_seconds: int = 0) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def list_keys(self, prefix: str, limit: int = 0) -> list[str]: ...


def _expiry(now: float, ttl_seconds: int) -> float | None:
    if ttl_seconds < 0:
        msg = f"ttl_seconds cannot be negative, got {ttl_seconds}"
        raise ValueError(msg)
    return now + ttl_seconds if ttl_seconds else None


class InMemoryKeyValueStore:
    """Dict-backed store with lazy TTL eviction.

    Args:
        clock: Returns the current time in seconds (tests pass a fake).
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._data: dict[str, tuple[str, float | None]] = {}

    def _live(self, key: str) -> str | None:
        item = self._data.get(key)
        if item is None:
            return None
        value, expires_at = item
        if expires_at is not None and self._clock() >= expires_at:
            del self._data[key]
            return None
        return value

    async def get(self, key: str) -> str | None:
        return self._live(key)

    async def set(self, key: str, value: str, ttl_seconds: int = 0) -> None:
        self._data[key] = (value, _expiry(self._clock(), ttl_seconds))

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    async def list_keys(self, prefix: str, limit: int = 0) -> list[str]:
        keys: list[str] = []
        for key in list(self._data):
            if not key.startswith(prefix) or self._live(key) is None:
                continue
            keys.append(key)
            if limit and len(keys) >= limit:
                break
        return keys

    async def purge_expired(self) -> int:
        """Drop every expired entry.

        Returns:
            Number of entries removed.
        """
        before = len(self._data)
        for key in list(self._data):
            self._live(key)
        return before - len(self._data)


class SqlKeyValueStore:
    """Key-value store over the kv_entries table.

    Each call runs in its own session and commits immediately, so two
    writes are never atomic with respect to each other.

    Args:
        session_factory: async_sessionmaker bound to the engine.
        clock: Returns the current unix time in seconds.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock

    def _not_expired(self) -> ColumnElement[bool]:
        return or_(
            KeyValueEntry.expires_at.is_(None),
            KeyValueEntry.expires_at > self._clock(),
        )

    async def get(self, key: str) -> str | None:
        stmt = select(KeyValueEntry.value).where(
            KeyValueEntry.key == key,
            self._not_expired(),
        )
        async with self._session_factory() as db:
            result = await db.execute(stmt)
            return result.scalar_one_or_none()

    async def set(self, key: str, value: str, ttl_seconds: int = 0) -> None:
        entry = KeyValueEntry(
            key=key,
            value=value,
            expires_at=_expiry(self._clock(), ttl_seconds),
        )
        async with self._session_factory() as db:
            await db.merge(entry)
            await db.commit()

    async def delete(self, key: str) -> None:
        async with self._session_factory() as db:
            await db.execute(delete(KeyValueEntry).where(KeyValueEntry.key == key))
            await db.commit()

    async def list_keys(self, prefix: str, limit: int = 0) -> list[str]:
        stmt = (
            select(KeyValueEntry.key)
            .where(
                KeyValueEntry.key.startswith(prefix, autoescape=True),
                self._not_expired(),
            )
            .order_by(KeyValueEntry.key)
        )
        if limit:
            stmt = stmt.limit(limit)
        async with self._session_factory() as db:
            result = await db.execute(stmt)
            return list(result.scalars().all())

    async def purge_expired(self) -> int:
        """Delete every expired row.

        Returns:
            Number of rows removed.
        """
        stmt = delete(KeyValueEntry).where(
            KeyValueEntry.expires_at.is_not(None),
            KeyValueEntry.expires_at <= self._clock(),
        )
        async with self._session_factory() as db:
            result = await db.execute(stmt)
            await db.commit()
            return result.rowcount or 0
