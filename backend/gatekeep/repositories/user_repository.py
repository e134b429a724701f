"""Repository for User records.

Emails are normalized (trimmed, lower-cased) on every read and write so
lookups are case-insensitive.
"""

from gatekeep.models.base import utcnow
from gatekeep.models.user import User, new_id
from gatekeep.repositories.record_store import RecordStore


def normalize_email(email: str) -> str:
    return email.strip().lower()


class UserRepository:
    """User lookups and writes over a RecordStore.

    Args:
        store: Record store for User.
    """

    def __init__(self, store: RecordStore[User]) -> None:
        self._store = store

    async def get_by_id(self, user_id: str) -> User | None:
        return await self._store.get(user_id)

    async def get_by_email(self, email: str) -> User | None:
        return await self._store.get_by_fields(email=normalize_email(email))

    async def create(
        self,
        *,
        email: str,
        password_hash: str | None = None,
        name: str | None = None,
        image: str | None = None,
        email_verified: bool = False,
    ) -> User:
        """Create a new user.

        Args:
            email: Email address (normalized before storage).
            password_hash: Argon2id credential, or None for OAuth-only users.
            name: Display name.
            image: Avatar URL.
            email_verified: Whether the email is already confirmed.

        Returns:
            The stored User.

        Raises:
            DuplicateRecordError: If the email is already taken.
        """
        now = utcnow()
        user = User(
            id=new_id(),
            email=normalize_email(email),
            password_hash=password_hash,
            name=name,
            image=image,
            email_verified=email_verified,
            created_at=now,
            updated_at=now,
        )
        await self._store.set(user)
        return user

    async def save(self, user: User) -> User:
        """Persist changes to an existing user, bumping updated_at."""
        user.updated_at = utcnow()
        await self._store.set(user)
        return user

    async def delete(self, user_id: str) -> None:
        await self._store.delete(user_id)

    async def list_paged(self, limit: int, offset: int = 0) -> list[User]:
        return await self._store.list_paged(limit, offset, order_by="created_at")

    async def count(self) -> int:
        return await self._store.count()
