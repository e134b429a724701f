"""Keyed record store for users and provider links.

Contract (records are ORM instances keyed by their "id" column):
    get(key) -> record | None
    get_by_fields(**fields) -> first matching record | None
    list_by_fields(**fields) -> all matching records
    set(record)                    upsert
    delete(key)                    missing keys are not an error
    list_paged(limit, offset, order_by)
    count()

set() raises DuplicateRecordError when a unique constraint is violated, so
callers can map races on email or provider identity to domain errors.
"""

from collections.abc import Sequence
from typing import Any, Generic, Protocol, TypeVar

from sqlalchemy import func, inspect, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from gatekeep.models.base import Base

ModelT = TypeVar("ModelT", bound=Base)


class DuplicateRecordError(Exception):
    """Upsert violated a uniqueness constraint."""


class RecordStore(Protocol[ModelT]):
    async def get(self, key: str) -> ModelT | None: ...

    async def get_by_fields(self, **fields: Any) -> ModelT | None: ...

    async def list_by_fields(self, **fields: Any) -> list[ModelT]: ...

    async def set(self, record: ModelT) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def list_paged(
        self, limit: int, offset: int = 0, order_by: str = "created_at"
    ) -> list[ModelT]: ...

    async def count(self) -> int: ...


class InMemoryRecordStore(Generic[ModelT]):
    """Dict-backed record store.

    Stores column snapshots rather than live objects, so mutating a returned
    record has no effect until it is passed back to set().

    Args:
        model: ORM class of the stored records.
        unique: Column groups that must be unique across records, mirroring
            the table's unique constraints.
    """

    def __init__(
        self,
        model: type[ModelT],
        unique: Sequence[tuple[str, ...]] = (),
    ) -> None:
        self.model = model
        self._columns = [attr.key for attr in inspect(model).mapper.column_attrs]
        self._unique = list(unique)
        self._rows: dict[str, dict[str, Any]] = {}

    def _snapshot(self, record: ModelT) -> dict[str, Any]:
        return {name: getattr(record, name) for name in self._columns}

    def _restore(self, row: dict[str, Any]) -> ModelT:
        return self.model(**row)

    @staticmethod
    def _matches(row: dict[str, Any], fields: dict[str, Any]) -> bool:
        return all(row.get(name) == value for name, value in fields.items())

    async def get(self, key: str) -> ModelT | None:
        row = self._rows.get(key)
        return self._restore(row) if row is not None else None

    async def get_by_fields(self, **fields: Any) -> ModelT | None:
        for row in self._rows.values():
            if self._matches(row, fields):
                return self._restore(row)
        return None

    async def list_by_fields(self, **fields: Any) -> list[ModelT]:
        return [self._restore(r) for r in self._rows.values() if self._matches(r, fields)]

    async def set(self, record: ModelT) -> None:
        row = self._snapshot(record)
        key = row["id"]
        if not key:
            msg = f"{self.model.__name__} record has no id"
            raise ValueError(msg)
        for group in self._unique:
            wanted = {name: row[name] for name in group}
            for other_key, other in self._rows.items():
                if other_key != key and self._matches(other, wanted):
                    msg = f"{self.model.__name__} violates unique {group}"
                    raise DuplicateRecordError(msg)
        self._rows[key] = row

    async def delete(self, key: str) -> None:
        self._rows.pop(key, None)

    async def list_paged(
        self, limit: int, offset: int = 0, order_by: str = "created_at"
    ) -> list[ModelT]:
        rows = sorted(self._rows.values(), key=lambda r: (r[order_by], r["id"]))
        return [self._restore(r) for r in rows[offset : offset + limit]]

    async def count(self) -> int:
        return len(self._rows)


class SqlRecordStore(Generic[ModelT]):
    """Record store over one ORM table.

    Each call opens its own session and commits before returning. Records
    come back detached (expire_on_commit=False), so attribute access after
    the call does not hit the database.

    Args:
        model: ORM class of the stored records.
        session_factory: async_sessionmaker bound to the engine.
    """

    def __init__(
        self,
        model: type[ModelT],
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        self.model = model
        self._session_factory = session_factory

    async def get(self, key: str) -> ModelT | None:
        async with self._session_factory() as db:
            return await db.get(self.model, key)

    async def get_by_fields(self, **fields: Any) -> ModelT | None:
        stmt = select(self.model).filter_by(**fields).limit(1)
        async with self._session_factory() as db:
            result = await db.execute(stmt)
            return result.scalars().first()

    async def list_by_fields(self, **fields: Any) -> list[ModelT]:
        stmt = select(self.model).filter_by(**fields)
        async with self._session_factory() as db:
            result = await db.execute(stmt)
            return list(result.scalars().all())

    async def set(self, record: ModelT) -> None:
        async with self._session_factory() as db:
            await db.merge(record)
            try:
                await db.commit()
            except IntegrityError as e:
                await db.rollback()
                msg = f"{self.model.__name__} violates a unique constraint"
                raise DuplicateRecordError(msg) from e

    async def delete(self, key: str) -> None:
        async with self._session_factory() as db:
            record = await db.get(self.model, key)
            if record is None:
                return
            await db.delete(record)
            await db.commit()

    async def list_paged(
        self, limit: int, offset: int = 0, order_by: str = "created_at"
    ) -> list[ModelT]:
        column = getattr(self.model, order_by)
        stmt = (
            select(self.model)
            .order_by(column, self.model.id)  # type: ignore[attr-defined]
            .limit(limit)
            .offset(offset)
        )
        async with self._session_factory() as db:
            result = await db.execute(stmt)
            return list(result.scalars().all())

    async def count(self) -> int:
        stmt = select(func.count()).select_from(self.model)
        async with self._session_factory() as db:
            result = await db.execute(stmt)
            return int(result.scalar_one())
